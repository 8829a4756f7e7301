"""Tests for sshield.ssh.sshconfig module."""

import os
import stat
import sys
from pathlib import Path

from sshield.core.types import Project, ServerConfig, SSHKey
from sshield.ssh.sshconfig import SSHConfigSynchronizer, format_host_entry, header_project_id

UNRELATED = (
    "# my personal hosts\n"
    "Host github.com\n"
    "    IdentityFile ~/.ssh/id_github\n"
    "\n"
)


def _project(project_id: str = "web", servers: int = 1) -> Project:
    key = SSHKey(id="k1", name="deploy", path="/keys/deploy", public_key_path="/keys/deploy.pub")
    return Project(
        id=project_id,
        name=project_id.title(),
        keys=[key],
        servers=[
            ServerConfig(
                id=f"s{i}",
                name=f"{project_id}{i}",
                hostname=f"10.0.0.{i}",
                username="deploy",
                key_id="k1" if i == 1 else "",
            )
            for i in range(1, servers + 1)
        ],
    )


class TestFormatting:
    """Tests for host entry formatting."""

    def test_host_entry(self) -> None:
        """Test a full host entry."""
        entry = format_host_entry(
            "web1", "10.0.0.5", "deploy", 2222, "/keys/k", {"ForwardAgent": "yes"}
        )
        assert entry == (
            "Host web1\n"
            "    HostName 10.0.0.5\n"
            "    User deploy\n"
            "    Port 2222\n"
            "    IdentityFile /keys/k\n"
            "    ForwardAgent yes"
        )

    def test_host_entry_without_key(self) -> None:
        """Test that IdentityFile is omitted without a key."""
        entry = format_host_entry("db", "10.0.0.6", "root")
        assert "IdentityFile" not in entry
        assert "    Port 22" in entry

    def test_header_project_id(self) -> None:
        """Test parsing header lines."""
        assert header_project_id("# Project: Web Prod (web-prod)\n") == "web-prod"
        assert header_project_id("# Project: odd (name) (x1)") == "x1"
        assert header_project_id("# Some comment") is None
        assert header_project_id("Host web") is None

    def test_render_block(self) -> None:
        """Test rendering a project block."""
        block = SSHConfigSynchronizer(Path("unused")).render_project_block(_project(servers=2))
        assert block.startswith("# Project: Web (web)\nHost web1\n")
        assert "    IdentityFile /keys/deploy\n" in block
        assert "    ServerAliveInterval 60\n" in block
        assert "    ServerAliveCountMax 120\n" in block
        assert "\n\nHost web2\n" in block
        assert block.endswith("\n\n")
        assert block.count("IdentityFile") == 1


class TestMerge:
    """Tests for merging blocks into existing content."""

    def test_into_empty(self) -> None:
        """Test that an empty file gets the block alone."""
        sync = SSHConfigSynchronizer(Path("unused"))
        block = sync.render_project_block(_project())
        assert sync.merge_block("", "web", block) == block

    def test_append_preserves_content(self) -> None:
        """Test appending after unrelated content."""
        sync = SSHConfigSynchronizer(Path("unused"))
        block = sync.render_project_block(_project())
        merged = sync.merge_block(UNRELATED, "web", block)
        assert merged.startswith(UNRELATED)
        assert merged.endswith(block)

    def test_append_without_trailing_newline(self) -> None:
        """Test separation from content lacking a final newline."""
        sync = SSHConfigSynchronizer(Path("unused"))
        merged = sync.merge_block("Host a", "web", "# Project: Web (web)\n")
        assert merged == "Host a\n\n# Project: Web (web)\n"

    def test_replace_is_idempotent(self) -> None:
        """Test that merging the same block twice changes nothing."""
        sync = SSHConfigSynchronizer(Path("unused"))
        block = sync.render_project_block(_project())
        once = sync.merge_block(UNRELATED, "web", block)
        assert sync.merge_block(once, "web", block) == once

    def test_replace_keeps_other_projects(self) -> None:
        """Test that only the target block changes."""
        sync = SSHConfigSynchronizer(Path("unused"))
        db_block = sync.render_project_block(_project("db"))
        content = sync.merge_block(UNRELATED, "web", sync.render_project_block(_project()))
        content = sync.merge_block(content, "db", db_block)

        updated = sync.merge_block(
            content, "web", sync.render_project_block(_project(servers=3))
        )

        assert updated.startswith(UNRELATED)
        assert updated.endswith(db_block)
        assert "Host web3\n" in updated
        assert updated.count("# Project: Web (web)") == 1

    def test_remove_block(self) -> None:
        """Test removing a block."""
        sync = SSHConfigSynchronizer(Path("unused"))
        block = sync.render_project_block(_project())
        merged = UNRELATED + block
        assert sync.remove_block(merged, "web") == UNRELATED
        assert sync.remove_block(UNRELATED, "web") == UNRELATED


class TestSynchronizer:
    """Tests for writing the config file."""

    def test_update_creates_file(self, temp_dir: Path) -> None:
        """Test writing a fresh config file."""
        config_path = temp_dir / "ssh" / "config"
        sync = SSHConfigSynchronizer(config_path)

        assert sync.update_with_project(_project()) is None
        content = config_path.read_text(encoding="utf-8")
        assert content.startswith("# Project: Web (web)\n")
        if sys.platform != "win32":
            assert stat.S_IMODE(os.stat(config_path).st_mode) == 0o600

    def test_update_preserves_unrelated_bytes(self, temp_dir: Path) -> None:
        """Test that content outside the block survives byte for byte."""
        config_path = temp_dir / "config"
        config_path.write_text(UNRELATED, encoding="utf-8")
        sync = SSHConfigSynchronizer(config_path)

        backup = sync.update_with_project(_project())
        sync.update_with_project(_project(servers=2))

        content = config_path.read_text(encoding="utf-8")
        assert content.startswith(UNRELATED)
        assert content[len(UNRELATED):] == "\n" + sync.render_project_block(
            _project(servers=2)
        )
        assert backup is not None
        assert backup.read_text(encoding="utf-8") == UNRELATED

    def test_remove_project(self, temp_dir: Path) -> None:
        """Test removing a project's block from the file."""
        config_path = temp_dir / "config"
        config_path.write_text(UNRELATED, encoding="utf-8")
        sync = SSHConfigSynchronizer(config_path)
        sync.update_with_project(_project())

        assert sync.remove_project("web") is not None
        assert config_path.read_text(encoding="utf-8") == UNRELATED + "\n"
        assert sync.remove_project("web") is None
