"""Command router: policy gate, config resolution and backend dispatch.

Each call to ``CommandRouter.dispatch`` runs one command through::

    PolicyCheck -> ActionValidate -> Resolve -> BackendInvoke -> Render

and ends either REJECTED (policy/validation failure, the backend is
never touched) or REPLIED (success, or a handled error). Mutating
actions reply twice: a progress message before the backend call and a
completion (or error) message after it. Callers must expect one or two
replies per command, in order.

Key classes:
    CommandRouter: Dispatches Commands to action handlers.
    OriginPolicy: Decides which actions are allowed from which origins.
    ActionSpec: One entry of the action table.
    DispatchResult: Outcome plus the ordered replies of one command.

Key functions:
    default_actions: The status / enable / drain action table.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

import structlog

from .backend.base import BackendClient, ClientFactory
from .exceptions import BackendError
from .models import Command, NodeCondition, Origin
from .resolver import ConfigTree, MissingKeyError, MissingKeyLevel, resolve
from .templates import Translator, render_status

logger = structlog.get_logger("lbcfg.router")

ReplyFn = Callable[[str], Awaitable[None]]


class Outcome(str, Enum):
    """Terminal state of one dispatch."""
    REPLIED = "replied"
    REJECTED = "rejected"


@dataclass
class DispatchResult:
    """Replies produced for one command, in the order they were sent."""

    outcome: Outcome
    replies: List[str] = field(default_factory=list)


@dataclass
class ActionContext:
    """What an action handler gets to work with."""

    command: Command
    client: BackendClient
    translator: Translator
    reply: ReplyFn


# Action handler: async (ctx) -> None, replies through ctx.reply
ActionHandler = Callable[[ActionContext], Awaitable[None]]


@dataclass(frozen=True)
class ActionSpec:
    """One entry in the router's action table.

    Attributes:
        handler: Coroutine performing the action against the client.
        mutating: Whether the action changes balancer state.
        error_target: Translation key completing "trying to ..." in
            error titles.
    """

    handler: ActionHandler
    mutating: bool = False
    error_target: str = "status.error_target"


@dataclass(frozen=True)
class OriginPolicy:
    """Refuses mutating actions from restricted origins.

    Read-only actions are always allowed.
    """

    restricted_origins: FrozenSet[Origin] = frozenset({Origin.DIRECT})

    def allows(self, action_spec: Optional[ActionSpec], origin: Origin) -> bool:
        if action_spec is None or not action_spec.mutating:
            return True
        return origin not in self.restricted_origins


# --- Action handlers ---

async def status_action(ctx: ActionContext) -> None:
    """Reply with the rendered status of every balancer."""
    cmd = ctx.command
    details = await ctx.client.status()
    if not details:
        await ctx.reply(ctx.translator.t(
            "status.no_details",
            region=cmd.region, env=cmd.environment, balancer=cmd.balancer,
        ))
        return
    await ctx.reply(render_status(details))


def update_node_action(condition: NodeCondition) -> ActionHandler:
    """Build a handler that moves the command's node to ``condition``."""
    async def handler(ctx: ActionContext) -> None:
        cmd = ctx.command
        await ctx.reply(ctx.translator.t(
            f"{cmd.action}.starting_update",
            node=cmd.node, region=cmd.region,
            env=cmd.environment, balancer=cmd.balancer,
        ))
        await ctx.client.update_node(cmd.node, condition)
        await ctx.reply(ctx.translator.t("general.update_done", balancer=cmd.balancer))
    return handler


def default_actions() -> Dict[str, ActionSpec]:
    """Return the standard ``status`` / ``enable`` / ``drain`` table."""
    return {
        "status": ActionSpec(handler=status_action),
        "enable": ActionSpec(
            handler=update_node_action(NodeCondition.ENABLED),
            mutating=True,
            error_target="update.error_target",
        ),
        "drain": ActionSpec(
            handler=update_node_action(NodeCondition.DRAINING),
            mutating=True,
            error_target="update.error_target",
        ),
    }


class CommandRouter:
    """Routes Commands to action handlers against a backend client.

    Holds no per-command state: the tree is read-only and a new client
    is built for every command, so concurrent dispatches don't interfere.

    Args:
        tree: Read-only configuration tree.
        client_factory: Builds a BackendClient for ``<region>-<env>``.
        translator: Reply text lookup.
        policy: Origin policy gate (default: no mutations in DMs).
        actions: Action table (default: ``default_actions()``).
        command_prefix: Prefix shown in usage replies.
    """

    def __init__(
        self,
        tree: ConfigTree,
        client_factory: ClientFactory,
        translator: Translator,
        policy: Optional[OriginPolicy] = None,
        actions: Optional[Dict[str, ActionSpec]] = None,
        command_prefix: str = "lbcfg",
    ):
        self.tree = tree
        self.client_factory = client_factory
        self.translator = translator
        self.policy = policy or OriginPolicy()
        self.actions = dict(actions if actions is not None else default_actions())
        self.command_prefix = command_prefix

    @property
    def action_names(self) -> List[str]:
        """Valid action names, sorted."""
        return sorted(self.actions)

    def _valid_actions_text(self) -> str:
        names = [f"'{name}'" for name in self.action_names]
        if len(names) <= 1:
            return "".join(names)
        return ", ".join(names[:-1]) + " or " + names[-1]

    def _missing_key_message(self, err: MissingKeyError, cmd: Command) -> str:
        t = self.translator.t
        if err.level == MissingKeyLevel.REGION:
            return t("general.missing_region", region=err.region)
        if err.level == MissingKeyLevel.ENVIRONMENT:
            return t("general.missing_env", region=err.region, env=err.environment)
        if err.level == MissingKeyLevel.BALANCER:
            return t(
                "general.missing_balancer",
                region=err.region, env=err.environment, balancer=err.balancer,
            )
        return t("general.balancer_not_arr", path=cmd.path)

    async def dispatch(
        self, cmd: Command, reply: Optional[ReplyFn] = None
    ) -> DispatchResult:
        """Run one command to completion.

        Never raises: backend and unexpected failures are rendered as
        replies.

        Args:
            cmd: Parsed command.
            reply: Optional coroutine called with each reply as soon as
                it is produced.

        Returns:
            DispatchResult with the outcome and every reply, in order.
        """
        result = DispatchResult(outcome=Outcome.REPLIED)

        async def emit(text: str) -> None:
            result.replies.append(text)
            if reply is not None:
                await reply(text)

        log = logger.bind(action=cmd.action, path=cmd.path, origin=cmd.origin.value)
        action_spec = self.actions.get(cmd.action)

        # PolicyCheck
        if not self.policy.allows(action_spec, cmd.origin):
            log.warning("command_rejected_private")
            result.outcome = Outcome.REJECTED
            await emit(self.translator.t("general.private_message"))
            return result

        # ActionValidate
        if action_spec is None:
            log.info("command_rejected_invalid_action")
            result.outcome = Outcome.REJECTED
            await emit(self.translator.t(
                "router.invalid_action",
                action=cmd.action, valid=self._valid_actions_text(),
            ))
            return result
        if action_spec.mutating and not cmd.node:
            log.info("command_rejected_missing_node")
            result.outcome = Outcome.REJECTED
            prefix = f"{self.command_prefix} " if self.command_prefix else ""
            await emit(self.translator.t(
                "router.missing_node", action=cmd.action, prefix=prefix,
            ))
            return result

        # Resolve
        resolution = resolve(self.tree, cmd.region, cmd.environment, cmd.balancer)
        if isinstance(resolution, MissingKeyError):
            log.info("command_config_missing", level=resolution.level.value)
            await emit(self._missing_key_message(resolution, cmd))
            return result

        # BackendInvoke
        target = self.translator.t(
            action_spec.error_target,
            action=cmd.action, region=cmd.region,
            env=cmd.environment, balancer=cmd.balancer,
        )
        client = None
        try:
            client = self.client_factory(cmd.env_key)
            for lb_id in resolution:
                client.add_target(lb_id)
            await action_spec.handler(ActionContext(
                command=cmd, client=client, translator=self.translator, reply=emit,
            ))
            log.info("command_completed", node=cmd.node, replies=len(result.replies))
        except BackendError as e:
            log.warning("command_backend_error", error=str(e), error_type=e.error_name)
            title = self.translator.t("exception.backend_title", target=target)
            await emit(self.translator.render_exception(title, e))
        except Exception as e:
            log.error(
                "command_unexpected_error", error=str(e), error_type=type(e).__name__,
                exc_info=True,
            )
            title = self.translator.t("exception.generic_title", target=target)
            await emit(self.translator.render_exception(title, e))
        finally:
            if client is not None:
                try:
                    await client.close()
                except Exception as e:
                    log.warning("client_close_failed", error=str(e))
        return result
