"""Shell scripts for loading agent keys and exporting agent variables."""

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, Template

from sshield.core.constant import APP_NAME
from sshield.core.types import AgentEnvironment, utc_now


class AgentScriptTemplate:
    """Renders the agent startup script and environment file."""

    # Template directory path
    _TEMPLATE_DIR = Path(__file__).parent / "files"

    STARTUP_TEMPLATE = "agent-startup.sh.j2"
    ENVIRONMENT_TEMPLATE = "agent-env.sh.j2"

    def __init__(self, app_name: str = APP_NAME) -> None:
        """Initialize agent script template.

        Args:
            app_name: Name of the CLI the startup script invokes.
        """
        self._app_name = app_name

        # Setup Jinja2 environment
        self._env = Environment(
            loader=FileSystemLoader(self._TEMPLATE_DIR),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def _load_template(self, template_name: str) -> Template:
        """Load a template file.

        Args:
            template_name: Name of the template file.

        Returns:
            Jinja2 Template object.
        """
        return self._env.get_template(template_name)

    def render_startup_script(
        self,
        project_id: str,
        base_dir: Path,
        lifetime: int | None = None,
    ) -> str:
        """Render a script that starts an agent and loads a project's keys.

        Args:
            project_id: Project whose keys are loaded.
            base_dir: sshield base directory exported to the CLI.
            lifetime: Key lifetime in seconds, None for no expiry.

        Returns:
            Script content.
        """
        return self._load_template(self.STARTUP_TEMPLATE).render(
            app_name=self._app_name,
            project_id=project_id,
            base_dir=str(base_dir),
            lifetime=lifetime,
            generated=utc_now(),
        )

    def render_environment(self, environment: AgentEnvironment) -> str:
        """Render a sourceable file exporting the agent variables.

        Args:
            environment: Running agent's socket and PID.

        Returns:
            File content.
        """
        return self._load_template(self.ENVIRONMENT_TEMPLATE).render(
            app_name=self._app_name,
            export_lines=environment.export_lines(),
            generated=utc_now(),
        )
