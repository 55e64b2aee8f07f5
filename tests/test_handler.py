"""Tests for the chat handler sitting in front of the router."""

from unittest.mock import AsyncMock

import pytest

from lbcfg.handler import LbcfgHandler
from lbcfg.models import InboundMessage, NodeCondition, Origin
from lbcfg.router import CommandRouter
from lbcfg.routes import RouteTable


def _handler(tree, factory, translator, prefix="lbcfg"):
    router = CommandRouter(tree, factory, translator, command_prefix=prefix)
    return LbcfgHandler(router, RouteTable(prefix), translator)


def _msg(body, origin=Origin.GROUP, is_command=True):
    return InboundMessage(body=body, sender="+15550001234", origin=origin, is_command=is_command)


@pytest.mark.asyncio
async def test_drain_sends_both_replies(happy_tree, translator, fake_client_cls, factory_cls):
    """An addressed drain sends the progress and completion replies in order."""
    client = fake_client_cls()
    handler = _handler(happy_tree, factory_cls(client), translator)
    send = AsyncMock()

    sent = await handler.handle(_msg("lbcfg drain sf test lita app01"), send)

    assert sent == [
        "Draining app01 within the sf.test.lita balancer...",
        "Finished updating the lita load balancer",
    ]
    assert [c.args[0] for c in send.await_args_list] == sent
    assert client.updates == [("app01", NodeCondition.DRAINING)]


@pytest.mark.asyncio
async def test_direct_message_rejected(happy_tree, translator):
    """Mutations from a direct message get the private-message reply."""
    factory = AsyncMock()
    handler = _handler(happy_tree, factory, translator)

    sent = await handler.handle(_msg("lbcfg enable sf test lita app01", Origin.DIRECT), AsyncMock())

    assert sent == [translator.t("general.private_message")]
    factory.assert_not_called()


@pytest.mark.asyncio
async def test_not_found_echoes_body(happy_tree, translator):
    """Addressed text matching no route is echoed back in the not-found reply."""
    handler = _handler(happy_tree, AsyncMock(), translator)
    sent = await handler.handle(_msg("lbcfg foo bar"), AsyncMock())
    assert sent == [
        "The command did not match any known routes, please try again. ('lbcfg foo bar')"
    ]


@pytest.mark.asyncio
async def test_unaddressed_chatter_is_ignored(happy_tree, translator):
    """Group chatter not addressed to the bot gets no reply."""
    handler = _handler(happy_tree, AsyncMock(), translator)
    send = AsyncMock()
    sent = await handler.handle(_msg("lunch anyone?", is_command=False), send)
    assert sent == []
    send.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    "lbcfg drain sf test lita app01",
    "lbcfg enable sf test lita app01",
    "lbcfg status sf test lita",
    "lbcfg help",
])
async def test_unaddressed_group_command_is_ignored(
    body, happy_tree, translator, fake_client_cls, factory_cls
):
    """A prefixed command in a group does nothing unless the bot was addressed."""
    client = fake_client_cls()
    factory = factory_cls(client)
    handler = _handler(happy_tree, factory, translator)
    send = AsyncMock()

    sent = await handler.handle(_msg(body, is_command=False), send)

    assert sent == []
    send.assert_not_awaited()
    assert factory.keys == []
    assert client.updates == []


@pytest.mark.asyncio
async def test_empty_prefix_requires_mention(happy_tree, translator, fake_client_cls, factory_cls):
    """Bare forms are routed only when the message was addressed to the bot."""
    client = fake_client_cls()
    handler = _handler(happy_tree, factory_cls(client), translator, prefix="")

    ignored = await handler.handle(_msg("drain sf test lita app01", is_command=False), AsyncMock())
    assert ignored == []
    assert client.updates == []

    sent = await handler.handle(_msg("drain sf test lita app01"), AsyncMock())
    assert sent[-1] == "Finished updating the lita load balancer"


@pytest.mark.asyncio
async def test_truncated_node_is_not_acted_on(happy_tree, translator, fake_client_cls, factory_cls):
    """A node name the routes can't take whole gets the not-found reply."""
    client = fake_client_cls()
    handler = _handler(happy_tree, factory_cls(client), translator)

    sent = await handler.handle(_msg("lbcfg drain sf test lita web_01.prod"), AsyncMock())

    assert sent == [translator.t("not_found", body="lbcfg drain sf test lita web_01.prod")]
    assert client.updates == []


@pytest.mark.asyncio
async def test_help_lists_every_command(happy_tree, translator):
    """help replies once with the usage of every command."""
    handler = _handler(happy_tree, AsyncMock(), translator)
    sent = await handler.handle(_msg("lbcfg help"), AsyncMock())

    assert len(sent) == 1
    text = sent[0]
    assert text.startswith("Load Balancers:")
    for usage in (
        "lbcfg status <region> <environment> <balancer>",
        "lbcfg enable <region> <environment> <balancer> <node>",
        "lbcfg drain <region> <environment> <balancer> <node>",
        "lbcfg help",
    ):
        assert usage in text


@pytest.mark.asyncio
async def test_send_failure_is_not_raised(happy_tree, translator):
    """A failing send is logged, not raised to the transport."""
    handler = _handler(happy_tree, AsyncMock(), translator)
    send = AsyncMock(side_effect=ConnectionError("gone"))
    sent = await handler.handle(_msg("lbcfg help"), send)
    assert len(sent) == 1
