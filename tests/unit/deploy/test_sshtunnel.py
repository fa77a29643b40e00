"""Tests for the reverse SSH tunnel."""

from __future__ import annotations

from unittest.mock import MagicMock

import paramiko
import pytest

from microdeploy.deploy.sshtunnel import SSHTunnel, SSHTunnelOptions


@pytest.fixture
def options() -> SSHTunnelOptions:
    return SSHTunnelOptions(
        host="10.0.0.6",
        user="vcap",
        local_forward_port=6901,
        remote_forward_port=6901,
        private_key="/keys/id_rsa",
    )


@pytest.fixture
def ssh_client() -> MagicMock:
    return MagicMock(spec=paramiko.SSHClient)


class TestSSHTunnel:
    def test_connects_and_requests_reverse_forward(
        self, options: SSHTunnelOptions, ssh_client: MagicMock
    ) -> None:
        tunnel = SSHTunnel(options, client_factory=lambda: ssh_client)

        tunnel.start()
        try:
            assert tunnel.wait_connected(timeout=5) is True
        finally:
            tunnel.stop()

        connect_kwargs = ssh_client.connect.call_args.kwargs
        assert connect_kwargs["hostname"] == "10.0.0.6"
        assert connect_kwargs["username"] == "vcap"
        assert connect_kwargs["key_filename"] == "/keys/id_rsa"
        transport = ssh_client.get_transport.return_value
        args, _ = transport.request_port_forward.call_args
        assert args == ("", 6901)
        ssh_client.close.assert_called_once()
        assert tunnel.error is None

    def test_exhausted_retries_record_error(
        self, options: SSHTunnelOptions, ssh_client: MagicMock
    ) -> None:
        ssh_client.connect.side_effect = OSError("connection refused")
        tunnel = SSHTunnel(
            options, client_factory=lambda: ssh_client, retry_delay=0, max_attempts=3
        )

        tunnel._run()

        assert ssh_client.connect.call_count == 3
        assert tunnel.is_connected is False
        assert tunnel.error is not None
        assert "after 3 attempts" in str(tunnel.error)
        assert "connection refused" in str(tunnel.error)

    def test_missing_transport_is_retried(
        self, options: SSHTunnelOptions, ssh_client: MagicMock
    ) -> None:
        ssh_client.get_transport.return_value = None
        tunnel = SSHTunnel(
            options, client_factory=lambda: ssh_client, retry_delay=0, max_attempts=2
        )

        tunnel._run()

        assert ssh_client.connect.call_count == 2
        assert tunnel.error is not None

    def test_failed_port_forward_closes_each_connection(
        self, options: SSHTunnelOptions, ssh_client: MagicMock
    ) -> None:
        transport = ssh_client.get_transport.return_value
        transport.request_port_forward.side_effect = paramiko.SSHException("forward denied")
        tunnel = SSHTunnel(
            options, client_factory=lambda: ssh_client, retry_delay=0, max_attempts=3
        )

        tunnel._run()

        assert ssh_client.close.call_count == 3
        assert "forward denied" in str(tunnel.error)

    def test_stop_while_connecting_closes_new_connection(
        self, options: SSHTunnelOptions, ssh_client: MagicMock
    ) -> None:
        tunnel = SSHTunnel(options, client_factory=lambda: ssh_client)
        ssh_client.connect.side_effect = lambda **kwargs: tunnel.stop()

        tunnel._run()

        assert tunnel.is_connected is False
        assert tunnel._client is None
        ssh_client.close.assert_called_once()
