"""Command line interface for sshield.

This module provides command-line access to:
- Projects and the active project
- SSH keys of a project
- The SSH agent
- Servers and the SSH client config
"""

import argparse
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import Any

from sshield import functions
from sshield.core.config import ConfigManager
from sshield.core.constant import APP_NAME, APP_VERSION, DEFAULT_KDF_ROUNDS, DEFAULT_KEY_BITS
from sshield.core.errors import ExternalToolError, InvalidOperationError, SSHieldError
from sshield.core.logging import resolve_level, setup_logging
from sshield.core.paths import AppPaths
from sshield.core.types import KeyType
from sshield.ssh.agent import AgentController
from sshield.ssh.client import SSHClient

logger = logging.getLogger(__name__)


def _output(args: argparse.Namespace, data: Any, lines: list[str]) -> None:
    """Print ``data`` as JSON with ``--json``, otherwise ``lines``."""
    if args.json:
        print(json.dumps(data, indent=2))
        return
    for line in lines:
        print(line)


def _parse_options(values: list[str] | None) -> dict[str, str]:
    """Parse repeated ``KEY=VALUE`` arguments."""
    options: dict[str, str] = {}
    for value in values or []:
        name, sep, option_value = value.partition("=")
        if not sep or not name:
            raise argparse.ArgumentTypeError(f"Invalid option (expected KEY=VALUE): {value}")
        options[name] = option_value
    return options


def _ask_passphrase(args: argparse.Namespace, confirm: bool = False) -> str:
    if not getattr(args, "passphrase", False):
        return ""
    passphrase = getpass.getpass("Passphrase: ")
    if confirm and passphrase != getpass.getpass("Confirm passphrase: "):
        raise SSHieldError("Passphrases do not match")
    return passphrase


# Top level commands


def cmd_init(args: argparse.Namespace, paths: AppPaths) -> int:
    """Init command handler."""
    active = functions.initialize(force=args.force, project_name=args.project, paths=paths)
    _output(
        args,
        {"baseDir": str(paths.base_dir), "activeProject": active},
        [f"Initialized {APP_NAME} in {paths.base_dir}", f"Active project: {active}"],
    )
    return 0


def cmd_status(args: argparse.Namespace, paths: AppPaths) -> int:
    """Status command handler."""
    status = functions.get_status(paths)
    if not status["initialized"]:
        lines = [f"Not initialized. Run '{APP_NAME} init'."]
    else:
        lines = [
            f"Base directory: {status['base_dir']}",
            f"Active project: {status['active_project']}",
            f"Projects: {status['projects']}",
        ]
    _output(args, status, lines)
    return 0


# Project commands


def cmd_project_create(args: argparse.Namespace, paths: AppPaths) -> int:
    """Project create command handler."""
    project = functions.create_project(
        args.name, args.description, activate=args.activate, paths=paths
    )
    lines = [f"Project created: {project.name} ({project.id})"]
    if args.activate:
        lines.append(f"Active project: {project.id}")
    _output(args, project.to_json_dict(), lines)
    return 0


def cmd_project_list(args: argparse.Namespace, paths: AppPaths) -> int:
    """Project list command handler."""
    projects = functions.list_projects(paths)
    active = functions.get_active_project(paths)
    lines = []
    for project in projects:
        marker = "*" if project.id == active else " "
        lines.append(
            f"{marker} {project.id}  {project.name}  "
            f"({len(project.keys)} keys, {len(project.servers)} servers)"
        )
    _output(args, [p.to_json_dict() for p in projects], lines or ["No projects found."])
    return 0


def cmd_project_use(args: argparse.Namespace, paths: AppPaths) -> int:
    """Project use command handler."""
    project = functions.set_active_project(args.project_id, paths)
    _output(args, project.to_json_dict(), [f"Active project: {project.name} ({project.id})"])
    return 0


def cmd_project_update(args: argparse.Namespace, paths: AppPaths) -> int:
    """Project update command handler."""
    if args.name is None and args.description is None:
        raise InvalidOperationError("Nothing to update. Pass --name or --description.")
    project = functions.update_project(
        args.project_id, name=args.name, description=args.description, paths=paths
    )
    _output(args, project.to_json_dict(), [f"Project updated: {project.name} ({project.id})"])
    return 0


def cmd_project_show(args: argparse.Namespace, paths: AppPaths) -> int:
    """Project show command handler."""
    project = functions.get_project(args.project_id, paths)
    lines = [
        f"ID: {project.id}",
        f"Name: {project.name}",
        f"Description: {project.description or ''}",
        f"Created: {project.created}",
        f"Last used: {project.last_used or 'never'}",
        f"Keys: {len(project.keys)}",
        f"Servers: {len(project.servers)}",
    ]
    _output(args, project.to_json_dict(), lines)
    return 0


def cmd_project_delete(args: argparse.Namespace, paths: AppPaths) -> int:
    """Project delete command handler."""
    functions.delete_project(args.project_id, paths)
    _output(args, {"deleted": args.project_id}, [f"Project {args.project_id} deleted"])
    return 0


def cmd_project_export(args: argparse.Namespace, paths: AppPaths) -> int:
    """Project export command handler."""
    output = functions.export_project(
        args.project_id, args.output, include_keys=args.include_keys, paths=paths
    )
    _output(args, {"path": str(output)}, [f"Project exported to {output}"])
    return 0


def cmd_project_import(args: argparse.Namespace, paths: AppPaths) -> int:
    """Project import command handler."""
    project = functions.import_project(args.file, overwrite=args.overwrite, paths=paths)
    _output(
        args, project.to_json_dict(), [f"Project imported: {project.name} ({project.id})"]
    )
    return 0


def cmd_project_sync(args: argparse.Namespace, paths: AppPaths) -> int:
    """Project sync command handler."""
    backup = functions.update_ssh_config_with_project(args.project_id, paths)
    lines = [f"SSH config updated: {paths.ssh_config_path}"]
    if backup:
        lines.append(f"Backup: {backup}")
    _output(
        args,
        {"path": str(paths.ssh_config_path), "backup": str(backup) if backup else None},
        lines,
    )
    return 0


# Key commands


def cmd_key_generate(args: argparse.Namespace, paths: AppPaths) -> int:
    """Key generate command handler."""
    key = functions.generate_key(
        name=args.name,
        project_id=args.project,
        key_type=KeyType(args.type),
        bits=args.bits,
        kdf_rounds=args.rounds,
        comment=args.comment,
        passphrase=_ask_passphrase(args, confirm=True),
        force=args.force,
        paths=paths,
    )
    _output(
        args,
        key.to_json_dict(),
        [f"Key generated: {key.name} ({key.id})", f"Fingerprint: {key.fingerprint}"],
    )
    return 0


def cmd_key_import(args: argparse.Namespace, paths: AppPaths) -> int:
    """Key import command handler."""
    key = functions.import_key(
        args.path, name=args.name, copy=args.copy, project_id=args.project, paths=paths
    )
    _output(args, key.to_json_dict(), [f"Key imported: {key.name} ({key.id})"])
    return 0


def cmd_key_list(args: argparse.Namespace, paths: AppPaths) -> int:
    """Key list command handler."""
    keys = functions.list_keys(args.project, paths)
    lines = [f"{k.id}  {k.name}  {k.type.value}  {k.fingerprint}" for k in keys]
    _output(args, [k.to_json_dict() for k in keys], lines or ["No keys found."])
    return 0


def cmd_key_show(args: argparse.Namespace, paths: AppPaths) -> int:
    """Key show command handler."""
    public_key = functions.show_public_key(args.key_id, args.project, paths)
    _output(args, {"id": args.key_id, "publicKey": public_key}, [public_key])
    return 0


def cmd_key_delete(args: argparse.Namespace, paths: AppPaths) -> int:
    """Key delete command handler."""
    key = functions.delete_key(
        args.key_id, args.project, remove_files=args.remove_files, paths=paths
    )
    _output(args, key.to_json_dict(), [f"Key deleted: {key.name} ({key.id})"])
    return 0


def cmd_key_add(args: argparse.Namespace, paths: AppPaths) -> int:
    """Key add command handler."""
    key = functions.add_key_to_agent(
        args.key_id,
        args.project,
        lifetime=args.lifetime,
        passphrase=_ask_passphrase(args) or None,
        paths=paths,
    )
    _output(args, key.to_json_dict(), [f"Key added to SSH agent: {key.name}"])
    return 0


# Agent commands


def cmd_agent_start(args: argparse.Namespace, paths: AppPaths) -> int:
    """Agent start command handler.

    Prints shell assignments so the caller can ``eval`` them.
    """
    environment = functions.start_agent(AgentController())
    _output(args, environment.to_json_dict(), environment.export_lines())
    return 0


def cmd_agent_stop(args: argparse.Namespace, paths: AppPaths) -> int:
    """Agent stop command handler."""
    functions.stop_agent(AgentController())
    _output(
        args,
        {"running": False},
        ["unset SSH_AUTH_SOCK;", "unset SSH_AGENT_PID;"],
    )
    return 0


def cmd_agent_status(args: argparse.Namespace, paths: AppPaths) -> int:
    """Agent status command handler."""
    status = functions.agent_status(AgentController())
    if not status.running:
        lines = ["SSH agent is not running"]
    else:
        lines = [f"SSH agent is running (socket {status.socket})"]
        lines += [f"  {k.bits} {k.fingerprint} {k.comment or ''} ({k.type})" for k in status.keys]
        if not status.keys:
            lines.append("  No keys loaded")
    _output(args, status.to_json_dict(), lines)
    return 0


def cmd_agent_add_project(args: argparse.Namespace, paths: AppPaths) -> int:
    """Agent add-project command handler."""
    agent = AgentController()
    result = functions.add_project_keys_to_agent(
        args.project, lifetime=args.lifetime, paths=paths, agent=agent
    )
    lines = [f"Added {result.added_count} keys to SSH agent"]
    lines += [f"Failed {key_id}: {message}" for key_id, message in result.failed.items()]
    environment = agent.environment()
    if environment is not None:
        lines += environment.export_lines()
    _output(args, result.to_json_dict(), lines)
    return 1 if result.failed and not result.added else 0


def cmd_agent_clear(args: argparse.Namespace, paths: AppPaths) -> int:
    """Agent clear command handler."""
    removed = functions.remove_all_keys_from_agent(AgentController())
    _output(args, {"removed": removed}, [f"Removed {removed} keys from SSH agent"])
    return 0


def cmd_agent_env(args: argparse.Namespace, paths: AppPaths) -> int:
    """Agent env command handler."""
    output = functions.export_agent_environment(args.output, paths, AgentController())
    _output(
        args,
        {"path": str(output)},
        [f"SSH agent environment written to {output}", f"Load it with: source {output}"],
    )
    return 0


def cmd_agent_script(args: argparse.Namespace, paths: AppPaths) -> int:
    """Agent script command handler."""
    output = functions.write_agent_startup_script(
        args.output, args.project, args.lifetime, paths
    )
    _output(args, {"path": str(output)}, [f"SSH agent startup script written to {output}"])
    return 0


# Server commands


def _sync_lines(args: argparse.Namespace, paths: AppPaths) -> list[str]:
    """Regenerate the project's SSH config block when --sync is given."""
    if not args.sync:
        return []
    functions.update_ssh_config_with_project(args.project, paths)
    return [f"SSH config updated: {paths.ssh_config_path}"]


def cmd_server_add(args: argparse.Namespace, paths: AppPaths) -> int:
    """Server add command handler."""
    server = functions.add_server(
        args.name,
        args.hostname,
        args.username,
        port=args.port,
        key_id=args.key or "",
        options=_parse_options(args.option),
        project_id=args.project,
        paths=paths,
    )
    lines = [f"Server added: {server.name} ({server.id})", *_sync_lines(args, paths)]
    _output(args, server.to_json_dict(), lines)
    return 0


def cmd_server_update(args: argparse.Namespace, paths: AppPaths) -> int:
    """Server update command handler."""
    changes: dict[str, Any] = {}
    if args.name is not None:
        changes["name"] = args.name
    if args.hostname is not None:
        changes["hostname"] = args.hostname
    if args.username is not None:
        changes["username"] = args.username
    if args.port is not None:
        changes["port"] = args.port
    if args.clear_key:
        changes["key_id"] = ""
    elif args.key is not None:
        changes["key_id"] = args.key
    if not changes:
        raise InvalidOperationError("Nothing to update.")

    server = functions.update_server(args.server, args.project, paths, **changes)
    lines = [f"Server updated: {server.name} ({server.id})", *_sync_lines(args, paths)]
    _output(args, server.to_json_dict(), lines)
    return 0


def cmd_server_list(args: argparse.Namespace, paths: AppPaths) -> int:
    """Server list command handler."""
    servers = functions.list_servers(args.project, paths)
    lines = [
        f"{s.name}  {s.username}@{s.hostname}:{s.port}  key={s.key_id or '-'}"
        for s in servers
    ]
    _output(args, [s.to_json_dict() for s in servers], lines or ["No servers found."])
    return 0


def cmd_server_delete(args: argparse.Namespace, paths: AppPaths) -> int:
    """Server delete command handler."""
    server = functions.delete_server(args.server, args.project, paths)
    lines = [f"Server deleted: {server.name}", *_sync_lines(args, paths)]
    _output(args, server.to_json_dict(), lines)
    return 0


def cmd_server_command(args: argparse.Namespace, paths: AppPaths) -> int:
    """Server command command handler."""
    command = " ".join(args.remote_command) if args.remote_command else None
    text = functions.ssh_command(
        args.server, command, with_key=not args.no_key, project_id=args.project, paths=paths
    )
    _output(args, {"command": text}, [text])
    return 0


def cmd_server_connect(args: argparse.Namespace, paths: AppPaths) -> int:
    """Server connect command handler."""
    command = " ".join(args.remote_command) if args.remote_command else None
    return functions.connect(args.server, command, args.project, paths)


def cmd_server_tunnel(args: argparse.Namespace, paths: AppPaths) -> int:
    """Server tunnel command handler.

    Keeps the tunnel open in the foreground until Ctrl-C.
    """
    process, local_port = functions.open_tunnel(
        args.server,
        args.remote_host,
        args.remote_port,
        local_port=args.local_port,
        project_id=args.project,
        paths=paths,
    )
    _output(
        args,
        {
            "localPort": local_port,
            "remoteHost": args.remote_host,
            "remotePort": args.remote_port,
            "pid": process.pid,
        },
        [
            f"Forwarding localhost:{local_port} -> {args.remote_host}:{args.remote_port}",
            "Press Ctrl-C to close the tunnel.",
        ],
    )
    sys.stdout.flush()

    try:
        returncode = process.wait()
    except KeyboardInterrupt:
        SSHClient.close_tunnel(process)
        print("Tunnel closed", file=sys.stderr)
        return 0

    if returncode != 0:
        stderr = process.stderr.read().decode(errors="replace") if process.stderr else ""
        raise ExternalToolError("SSH tunnel exited", list(process.args), returncode, stderr)
    return 0


def cmd_server_test(args: argparse.Namespace, paths: AppPaths) -> int:
    """Server test command handler."""
    ok = functions.test_server_connection(args.server, args.project, paths)
    _output(
        args,
        {"server": args.server, "connected": ok},
        [f"Connection to {args.server} {'succeeded' if ok else 'failed'}"],
    )
    return 0 if ok else 1


def _add_project_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--project",
        "-p",
        help="Project ID (defaults to the active project)",
    )


def _add_sync_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--sync",
        action="store_true",
        help="Update the SSH config afterwards",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="SSH key, agent and server management per project",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init / status
    init_parser = subparsers.add_parser("init", help="Initialize sshield")
    init_parser.add_argument("--force", action="store_true", help="Rewrite configuration")
    init_parser.add_argument("--project", help="Create and activate a first project")
    init_parser.set_defaults(func=cmd_init)

    status_parser = subparsers.add_parser("status", help="Show sshield status")
    status_parser.set_defaults(func=cmd_status)

    # project commands
    project_parser = subparsers.add_parser("project", help="Manage projects")
    project_sub = project_parser.add_subparsers(dest="project_command", required=True)

    create = project_sub.add_parser("create", help="Create a project")
    create.add_argument("name", help="Project name")
    create.add_argument("--description", "-d", help="Project description")
    create.add_argument("--activate", "-a", action="store_true", help="Make it active")
    create.set_defaults(func=cmd_project_create)

    project_list = project_sub.add_parser("list", aliases=["ls"], help="List projects")
    project_list.set_defaults(func=cmd_project_list)

    use = project_sub.add_parser("use", help="Set the active project")
    use.add_argument("project_id", help="Project ID")
    use.set_defaults(func=cmd_project_use)

    show = project_sub.add_parser("show", help="Show a project")
    show.add_argument("project_id", nargs="?", help="Project ID")
    show.set_defaults(func=cmd_project_show)

    update = project_sub.add_parser("update", help="Rename or describe a project")
    update.add_argument("project_id", help="Project ID")
    update.add_argument("--name", "-n", help="New project name")
    update.add_argument("--description", "-d", help="New description")
    update.set_defaults(func=cmd_project_update)

    delete = project_sub.add_parser("delete", help="Unregister a project")
    delete.add_argument("project_id", help="Project ID")
    delete.set_defaults(func=cmd_project_delete)

    export = project_sub.add_parser("export", help="Export a project")
    export.add_argument("project_id", nargs="?", help="Project ID")
    export.add_argument("--output", "-o", type=Path, help="Output file")
    export.add_argument(
        "--include-keys", action="store_true", help="Keep private key paths"
    )
    export.set_defaults(func=cmd_project_export)

    project_import = project_sub.add_parser("import", help="Import a project")
    project_import.add_argument("file", type=Path, help="Export file")
    project_import.add_argument(
        "--overwrite", action="store_true", help="Replace an existing project"
    )
    project_import.set_defaults(func=cmd_project_import)

    sync = project_sub.add_parser("sync", help="Write servers to the SSH config")
    sync.add_argument("project_id", nargs="?", help="Project ID")
    sync.set_defaults(func=cmd_project_sync)

    # key commands
    key_parser = subparsers.add_parser("key", help="Manage SSH keys")
    key_sub = key_parser.add_subparsers(dest="key_command", required=True)

    generate = key_sub.add_parser("generate", aliases=["gen"], help="Generate a key")
    _add_project_option(generate)
    generate.add_argument("--name", "-n", help="Key name")
    generate.add_argument(
        "--type",
        "-t",
        default=KeyType.ED25519.value,
        choices=[t.value for t in KeyType if t is not KeyType.UNKNOWN],
        help="Key type",
    )
    generate.add_argument("--bits", "-b", type=int, default=DEFAULT_KEY_BITS, help="Key size")
    generate.add_argument(
        "--rounds", type=int, default=DEFAULT_KDF_ROUNDS, help="KDF rounds"
    )
    generate.add_argument("--comment", "-C", help="Key comment")
    generate.add_argument(
        "--passphrase", action="store_true", help="Prompt for a passphrase"
    )
    generate.add_argument("--force", action="store_true", help="Overwrite existing key")
    generate.set_defaults(func=cmd_key_generate)

    key_import = key_sub.add_parser("import", help="Import an existing key")
    _add_project_option(key_import)
    key_import.add_argument("path", type=Path, help="Private key path")
    key_import.add_argument("--name", "-n", help="Key name")
    key_import.add_argument(
        "--copy", action="store_true", help="Copy key files into sshield"
    )
    key_import.set_defaults(func=cmd_key_import)

    key_list = key_sub.add_parser("list", aliases=["ls"], help="List keys")
    _add_project_option(key_list)
    key_list.set_defaults(func=cmd_key_list)

    key_show = key_sub.add_parser("show", help="Print a public key")
    _add_project_option(key_show)
    key_show.add_argument("key_id", help="Key ID")
    key_show.set_defaults(func=cmd_key_show)

    key_delete = key_sub.add_parser("delete", help="Delete a key")
    _add_project_option(key_delete)
    key_delete.add_argument("key_id", help="Key ID")
    key_delete.add_argument(
        "--remove-files", action="store_true", help="Delete key files too"
    )
    key_delete.set_defaults(func=cmd_key_delete)

    key_add = key_sub.add_parser("add", help="Load a key into the SSH agent")
    _add_project_option(key_add)
    key_add.add_argument("key_id", help="Key ID")
    key_add.add_argument("--lifetime", "-l", type=int, help="Lifetime in seconds")
    key_add.add_argument(
        "--passphrase", action="store_true", help="Prompt for a passphrase"
    )
    key_add.set_defaults(func=cmd_key_add)

    # agent commands
    agent_parser = subparsers.add_parser("agent", help="Control the SSH agent")
    agent_sub = agent_parser.add_subparsers(dest="agent_command", required=True)

    agent_sub.add_parser("start", help="Start the SSH agent").set_defaults(
        func=cmd_agent_start
    )
    agent_sub.add_parser("stop", help="Stop the SSH agent").set_defaults(
        func=cmd_agent_stop
    )
    agent_sub.add_parser("status", help="Show agent status").set_defaults(
        func=cmd_agent_status
    )

    add_project = agent_sub.add_parser("add-project", help="Load a project's keys")
    _add_project_option(add_project)
    add_project.add_argument("--lifetime", "-l", type=int, help="Lifetime in seconds")
    add_project.set_defaults(func=cmd_agent_add_project)

    agent_sub.add_parser("clear", help="Remove all keys from the agent").set_defaults(
        func=cmd_agent_clear
    )

    env = agent_sub.add_parser("env", help="Write the agent environment file")
    env.add_argument("--output", "-o", type=Path, help="Output file")
    env.set_defaults(func=cmd_agent_env)

    script = agent_sub.add_parser("script", help="Write an agent startup script")
    _add_project_option(script)
    script.add_argument("--output", "-o", type=Path, help="Output file")
    script.add_argument("--lifetime", "-l", type=int, help="Lifetime in seconds")
    script.set_defaults(func=cmd_agent_script)

    # server commands
    server_parser = subparsers.add_parser("server", help="Manage servers")
    server_sub = server_parser.add_subparsers(dest="server_command", required=True)

    server_add = server_sub.add_parser("add", help="Add a server")
    _add_project_option(server_add)
    server_add.add_argument("name", help="Server name (SSH host alias)")
    server_add.add_argument("hostname", help="Host name or address")
    server_add.add_argument("username", help="Login user")
    server_add.add_argument("--port", type=int, default=22, help="SSH port")
    server_add.add_argument("--key", "-k", help="Key ID")
    server_add.add_argument(
        "--option", "-o", action="append", help="Extra SSH option KEY=VALUE"
    )
    _add_sync_option(server_add)
    server_add.set_defaults(func=cmd_server_add)

    server_update = server_sub.add_parser("update", help="Change a server")
    _add_project_option(server_update)
    server_update.add_argument("server", help="Server ID or name")
    server_update.add_argument("--name", help="New server name")
    server_update.add_argument("--hostname", help="Host name or address")
    server_update.add_argument("--username", "-u", help="Login user")
    server_update.add_argument("--port", type=int, help="SSH port")
    key_group = server_update.add_mutually_exclusive_group()
    key_group.add_argument("--key", "-k", help="Key ID")
    key_group.add_argument("--clear-key", action="store_true", help="Unlink the key")
    _add_sync_option(server_update)
    server_update.set_defaults(func=cmd_server_update)

    server_list = server_sub.add_parser("list", aliases=["ls"], help="List servers")
    _add_project_option(server_list)
    server_list.set_defaults(func=cmd_server_list)

    server_delete = server_sub.add_parser("delete", help="Delete a server")
    _add_project_option(server_delete)
    server_delete.add_argument("server", help="Server ID or name")
    _add_sync_option(server_delete)
    server_delete.set_defaults(func=cmd_server_delete)

    server_command = server_sub.add_parser("command", help="Print the ssh command")
    _add_project_option(server_command)
    server_command.add_argument("server", help="Server ID or name")
    server_command.add_argument("remote_command", nargs="*", help="Remote command")
    server_command.add_argument(
        "--no-key", action="store_true", help="Omit the identity file"
    )
    server_command.set_defaults(func=cmd_server_command)

    server_connect = server_sub.add_parser("connect", help="Connect to a server")
    _add_project_option(server_connect)
    server_connect.add_argument("server", help="Server ID or name")
    server_connect.add_argument("remote_command", nargs="*", help="Remote command")
    server_connect.set_defaults(func=cmd_server_connect)

    server_tunnel = server_sub.add_parser("tunnel", help="Forward a local port")
    _add_project_option(server_tunnel)
    server_tunnel.add_argument("server", help="Server ID or name")
    server_tunnel.add_argument("remote_port", type=int, help="Port on the remote host")
    server_tunnel.add_argument(
        "--remote-host", default="localhost", help="Host reachable from the server"
    )
    server_tunnel.add_argument(
        "--local-port", "-L", type=int, help="Local port (random when omitted)"
    )
    server_tunnel.set_defaults(func=cmd_server_tunnel)

    server_test = server_sub.add_parser("test", help="Test a server connection")
    _add_project_option(server_test)
    server_test.add_argument("server", help="Server ID or name")
    server_test.set_defaults(func=cmd_server_test)

    return parser


def _configure_logging(args: argparse.Namespace, paths: AppPaths) -> None:
    config = ConfigManager(paths)
    level_name = None
    if config.is_initialized():
        try:
            level_name = config.load_config().ui_settings.log_level
        except SSHieldError:
            level_name = None
    log_file = paths.log_file if paths.base_dir.exists() else None
    setup_logging(resolve_level(level_name, args.verbose), log_file)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Arguments, defaults to ``sys.argv[1:]``.

    Returns:
        Exit code.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        # No command specified, show help
        parser.print_help()
        print()
        print("Quick start:")
        print(f"  {APP_NAME} init                        # Set up sshield")
        print(f"  {APP_NAME} project create web -a       # Create and activate a project")
        print(f"  {APP_NAME} key generate -n deploy      # Generate a key")
        print(f"  {APP_NAME} server add web1 10.0.0.5 deploy -k <key-id>")
        print(f"  {APP_NAME} project sync                # Write hosts to ~/.ssh/config")
        print(f'  eval "$({APP_NAME} agent start)"       # Start the SSH agent')
        return 0

    paths = AppPaths.default()
    _configure_logging(args, paths)

    try:
        return args.func(args, paths)
    except argparse.ArgumentTypeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except SSHieldError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
