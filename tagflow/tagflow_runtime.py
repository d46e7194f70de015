import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Literal, Mapping, Optional

from tagflow.tagflow_actor import Actor, RemoteActor
from tagflow.tagflow_capabilities import Capabilities, PageDocument
from tagflow.tagflow_channels import DirectChannel
from tagflow.tagflow_datatypes import TagflowError, root_scope, stringify_error
from tagflow.tagflow_files import ResolvableFile, ReferenceResolver
from tagflow.tagflow_fs import FileDownloader, FileOpener
from tagflow.tagflow_host_ops import register_host_families
from tagflow.tagflow_http import HttpFetcher
from tagflow.tagflow_interactive import ConsoleFormShower, ConsoleOkShower, LogCollector
from tagflow.tagflow_operator import Catalogue, evaluate
from tagflow.tagflow_remote import remote_sandbox_capabilities, sandbox_logic
from tagflow.tagflow_sandbox import ExpressionEvaluator, SchemaValidator, TemplateRenderer
from tagflow.tagflow_stdlib import pure_families

logger = logging.getLogger(__name__)

MAIN_FILE = "main"
SANDBOX_ACTOR_ID = "sandbox"


def _env_flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RuntimeSettings:
    debug: bool = False
    http_timeout: float = 5.0
    http_retries: int = 2
    download_dir: Optional[str] = None
    isolated: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'RuntimeSettings':
        env = os.environ if environ is None else environ
        return cls(
            debug=_env_flag(env.get("TAGFLOW_DEBUG")),
            http_timeout=float(env.get("TAGFLOW_HTTP_TIMEOUT", 5.0)),
            http_retries=int(env.get("TAGFLOW_HTTP_RETRIES", 2)),
            download_dir=env.get("TAGFLOW_DOWNLOAD_DIR") or None,
            isolated=_env_flag(env.get("TAGFLOW_ISOLATED")),
        )


def default_capabilities(settings: RuntimeSettings, document: Optional[PageDocument] = None) -> Capabilities:
    """In-process implementations of every capability."""
    return Capabilities(
        evaluator=ExpressionEvaluator(),
        renderer=TemplateRenderer(),
        validator=SchemaValidator(),
        form_shower=ConsoleFormShower(),
        ok_shower=ConsoleOkShower(),
        fetcher=HttpFetcher(timeout=settings.http_timeout, retries=settings.http_retries),
        downloader=FileDownloader(settings.download_dir),
        file_opener=FileOpener(),
        logger=LogCollector(),
        document=document,
    )


def create_catalogue(capabilities: Capabilities, settings: Optional[RuntimeSettings] = None) -> Catalogue:
    settings = settings or RuntimeSettings()
    debug_log = capabilities.logger.append if settings.debug and capabilities.logger is not None else None
    catalogue = Catalogue(debug_log=debug_log)
    for prefix, families in pure_families(catalogue).items():
        for family in families:
            catalogue.add_family(family, prefix)
    register_host_families(catalogue, capabilities)
    return catalogue


class Sandbox:
    """
    Runs the sandbox capabilities behind an actor and hands out remote
    proxies for them, so evaluation only reaches them through messages.
    """

    def __init__(self, capabilities: Capabilities):
        host_end, sandbox_end = DirectChannel.pair()
        logic = sandbox_logic(capabilities.evaluator, capabilities.renderer, capabilities.validator)
        self.actor = Actor(SANDBOX_ACTOR_ID, logic, sandbox_end)
        self.remote = RemoteActor(host_end, handler_id=SANDBOX_ACTOR_ID)

    async def start(self, timeout: Optional[float] = 5.0) -> Dict[str, Any]:
        self.remote.start()
        self.actor.start()
        await self.actor.loaded()
        await self.remote.wait_loaded(timeout)
        return remote_sandbox_capabilities(self.remote)

    def stop(self) -> None:
        self.actor.stop()
        self.remote.stop()


@dataclass
class ExecutionResult:
    """The structured result of a config evaluation."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    logs: List[Any] = field(default_factory=list)

    def format_error(self) -> str:
        if self.status != 'error':
            return ""
        return str(self.error_message or "Unknown error")


class ConfigRunner:
    """Resolves, builds and evaluates a set of config documents."""

    def __init__(self, capabilities: Optional[Capabilities] = None, settings: Optional[RuntimeSettings] = None):
        self.settings = settings or RuntimeSettings.from_env()
        self.capabilities = capabilities or default_capabilities(self.settings)
        self._sandbox: Optional[Sandbox] = None
        self._proxies: Dict[str, Any] = {}

    async def _effective_capabilities(self) -> Capabilities:
        if not self.settings.isolated:
            return self.capabilities
        if self._sandbox is None:
            self._sandbox = Sandbox(self.capabilities)
            self._proxies = await self._sandbox.start()
        return replace(self.capabilities, **self._proxies)

    def close(self) -> None:
        if self._sandbox is not None:
            self._sandbox.stop()
            self._sandbox = None

    async def eval_config(self, config_files: Dict[str, Any], secrets: Any = None, entry: Optional[str] = None) -> Any:
        """
        Evaluate `config_files` (name -> document); the file named `main`
        (or `entry`) is evaluated with `secrets` as the initial context.
        """
        entry = entry or (MAIN_FILE if MAIN_FILE in config_files else next(iter(config_files), None))
        if entry is None:
            raise TagflowError("No config files to evaluate")
        capabilities = await self._effective_capabilities()
        catalogue = create_catalogue(capabilities, self.settings)
        files = [ResolvableFile(name, content) for name, content in config_files.items()]
        built = ReferenceResolver(files, catalogue.resolve_node).resolve(entry)
        return await evaluate(built, root_scope(secrets))

    async def handle_config(self, config_files: Dict[str, Any], secrets: Any = None,
                            entry: Optional[str] = None) -> ExecutionResult:
        """The main entry point: never raises, reports failures in the result."""
        collector = self.capabilities.logger
        start = len(collector.entries) if isinstance(collector, LogCollector) else 0
        try:
            value = await self.eval_config(config_files, secrets, entry)
            status, error_message = 'success', None
        except Exception as e:
            logger.debug("Config evaluation failed", exc_info=True)
            value, status, error_message = None, 'error', stringify_error(e)
        logs = list(collector.entries[start:]) if isinstance(collector, LogCollector) else []
        return ExecutionResult(status=status, value=value, error_message=error_message, logs=logs)
