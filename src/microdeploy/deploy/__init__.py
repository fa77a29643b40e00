"""Deployment: state, stemcells, VM, disk, registry, tunnel and the deployer."""
