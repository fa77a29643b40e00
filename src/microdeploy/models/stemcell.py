"""Pydantic models for stemcells."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from microdeploy.index.canonical import fingerprint


class StemcellManifest(BaseModel):
    """Parsed ``stemcell.MF``.

    Attributes:
        name: Stemcell name
        version: Stemcell version
        sha1: sha1 of the image as published in the manifest
        image_path: Local path of the extracted image (excluded from the fingerprint)
        cloud_properties: Free-form properties handed to CPI create_stemcell
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Stemcell name")
    version: str = Field(default="", description="Stemcell version")
    sha1: str = Field(default="", description="Image sha1")
    image_path: str = Field(..., description="Extracted image path")
    cloud_properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def fingerprint(self) -> str:
        """Deterministic identity of the stemcell, independent of extraction dir."""
        return fingerprint(self.model_dump(mode="json", exclude={"image_path"}))


class ApplySpec(BaseModel):
    """Base apply spec shipped inside the stemcell (``apply_spec.yml``)."""

    model_config = ConfigDict(extra="allow")

    job: dict[str, Any] = Field(default_factory=dict)
    packages: dict[str, Any] = Field(default_factory=dict)
    networks: dict[str, Any] = Field(default_factory=dict)


class CloudStemcell(BaseModel):
    """A stemcell that has been uploaded to the cloud."""

    model_config = ConfigDict(frozen=True)

    cid: str = Field(..., description="CPI-assigned stemcell identifier")
    name: str = Field(default="", description="Stemcell name")
    version: str = Field(default="", description="Stemcell version")


class ExtractedStemcell:
    """A stemcell tarball extracted to a local directory."""

    def __init__(
        self,
        manifest: StemcellManifest,
        apply_spec: ApplySpec,
        extracted_path: Path,
    ) -> None:
        self.manifest = manifest
        self.apply_spec = apply_spec
        self.extracted_path = Path(extracted_path)

    def delete(self) -> None:
        """Remove the extraction directory."""
        shutil.rmtree(self.extracted_path, ignore_errors=True)

    def __repr__(self) -> str:
        return f"ExtractedStemcell(name={self.manifest.name!r}, path={self.extracted_path})"
