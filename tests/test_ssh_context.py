"""Tests for SSH command execution with a mocked paramiko client."""

from unittest.mock import MagicMock, patch

import pytest
from paramiko import SSHClient, SSHException

from zfsdom.core.config_loader import HostConfig
from zfsdom.core.context import SSHContext
from zfsdom.core.exceptions import CommandError, TransportError


@pytest.fixture
def mock_host():
    """Create a mock host configuration."""
    return HostConfig(
        hostname="test.example.com",
        user="testuser",
        port=2222,
        identity_file="/home/testuser/.ssh/id_rsa",
    )


def exec_result(stdout=b"", stderr=b"", exit_status=0):
    """Build the (stdin, stdout, stderr) triple returned by exec_command."""
    channel = MagicMock()
    channel.recv_exit_status.return_value = exit_status
    stdin_file = MagicMock()
    stdin_file.channel = channel
    stdout_file = MagicMock()
    stdout_file.read.return_value = stdout
    stdout_file.channel = channel
    stderr_file = MagicMock()
    stderr_file.read.return_value = stderr
    return stdin_file, stdout_file, stderr_file


@pytest.fixture
def mock_ssh_client():
    """Create a mock SSH client."""
    client = MagicMock(spec=SSHClient)
    transport = MagicMock()
    client.get_transport.return_value = transport
    return client


@pytest.mark.asyncio
class TestSSHContext:
    """Test session lifecycle and buffered execution."""

    async def test_open_connects_with_host_settings(self, mock_host, mock_ssh_client):
        with patch("zfsdom.core.context.ssh.SSHClient", return_value=mock_ssh_client):
            context = SSHContext(mock_host, connect_timeout=5)
            await context.open()

        mock_ssh_client.connect.assert_called_once()
        kwargs = mock_ssh_client.connect.call_args.kwargs
        assert kwargs["hostname"] == "test.example.com"
        assert kwargs["port"] == 2222
        assert kwargs["username"] == "testuser"
        assert kwargs["key_filename"] == "/home/testuser/.ssh/id_rsa"
        assert kwargs["timeout"] == 5
        mock_ssh_client.get_transport().set_keepalive.assert_called_once_with(30)
        assert context.is_remote is True
        assert context.name == "test.example.com:2222"

    async def test_default_port_is_left_out_of_name(self):
        assert SSHContext(HostConfig(hostname="test.example.com")).name == "test.example.com"

    async def test_open_failure_raises_transport_error(self, mock_host, mock_ssh_client):
        mock_ssh_client.connect.side_effect = SSHException("auth failed")
        with patch("zfsdom.core.context.ssh.SSHClient", return_value=mock_ssh_client):
            context = SSHContext(mock_host)
            with pytest.raises(TransportError, match="auth failed"):
                await context.open()
        mock_ssh_client.close.assert_called_once()

    async def test_run_before_open(self, mock_host):
        with pytest.raises(TransportError, match="not open"):
            await SSHContext(mock_host).run("true")

    async def test_run_command(self, mock_host, mock_ssh_client):
        mock_ssh_client.exec_command.return_value = exec_result(b"tank\t/tank\n", b"", 0)
        with patch("zfsdom.core.context.ssh.SSHClient", return_value=mock_ssh_client):
            context = SSHContext(mock_host, default_timeout=60)
            await context.open()
            result = await context.run("zfs list -H -o name,mountpoint")

        assert result.success
        assert result.stdout == "tank\t/tank\n"
        mock_ssh_client.exec_command.assert_called_once_with(
            "zfs list -H -o name,mountpoint", timeout=60
        )

    async def test_run_with_stdin(self, mock_host, mock_ssh_client):
        stdin_file, stdout_file, stderr_file = exec_result()
        mock_ssh_client.exec_command.return_value = (stdin_file, stdout_file, stderr_file)
        with patch("zfsdom.core.context.ssh.SSHClient", return_value=mock_ssh_client):
            context = SSHContext(mock_host)
            await context.open()
            await context.run("cat > /tmp/x.xml", stdin="<domain/>")

        stdin_file.write.assert_called_once_with("<domain/>")
        stdin_file.channel.shutdown_write.assert_called_once()

    async def test_run_failure_with_check(self, mock_host, mock_ssh_client):
        mock_ssh_client.exec_command.return_value = exec_result(b"", b"no such domain\n", 1)
        with patch("zfsdom.core.context.ssh.SSHClient", return_value=mock_ssh_client):
            context = SSHContext(mock_host)
            await context.open()
            with pytest.raises(CommandError, match="no such domain"):
                await context.run("virsh resume vm1", check=True)

    async def test_channel_error_raises_transport_error(self, mock_host, mock_ssh_client):
        mock_ssh_client.exec_command.side_effect = SSHException("channel closed")
        with patch("zfsdom.core.context.ssh.SSHClient", return_value=mock_ssh_client):
            context = SSHContext(mock_host)
            await context.open()
            with pytest.raises(TransportError, match="channel closed"):
                await context.run("true")

    async def test_close_is_idempotent(self, mock_host, mock_ssh_client):
        with patch("zfsdom.core.context.ssh.SSHClient", return_value=mock_ssh_client):
            context = SSHContext(mock_host)
            await context.open()
            await context.close()
            await context.close()
        mock_ssh_client.close.assert_called_once()


@pytest.mark.asyncio
class TestSSHStreaming:
    """Test spawned commands over a channel."""

    async def test_stream_from_channel(self, mock_host, mock_ssh_client):
        stdin_file, stdout_file, stderr_file = exec_result(exit_status=0)
        channel = stdout_file.channel
        channel.recv.side_effect = [b"Migration: [ 10 %]\rMigration: [100 %]\n", b""]
        channel.recv_stderr.side_effect = [b"total estimated size is 1M\n", b""]
        mock_ssh_client.exec_command.return_value = (stdin_file, stdout_file, stderr_file)

        with patch("zfsdom.core.context.ssh.SSHClient", return_value=mock_ssh_client):
            context = SSHContext(mock_host)
            await context.open()
            handle = await context.spawn("virsh migrate vm1 qemu+ssh://root@host1/system")
            out, err = [], []
            exit_code = await handle.stream(on_stdout=out.append, on_stderr=err.append)

        assert exit_code == 0
        assert out == ["Migration: [ 10 %]", "Migration: [100 %]"]
        assert err == ["total estimated size is 1M"]
