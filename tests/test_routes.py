"""Tests for the regex route table."""

import pytest

from lbcfg.models import Origin
from lbcfg.routes import RouteTable


@pytest.fixture
def routes():
    return RouteTable()


def test_status_route(routes):
    """status parses the three path segments and carries no node."""
    cmd = routes.match("lbcfg status sf test lita")
    assert cmd.action == "status"
    assert (cmd.region, cmd.environment, cmd.balancer) == ("sf", "test", "lita")
    assert cmd.node is None
    assert cmd.origin == Origin.GROUP


@pytest.mark.parametrize("action", ["drain", "enable"])
def test_action_route(routes, action):
    """Mutating actions parse the path and the node."""
    cmd = routes.match(f"lbcfg {action} sf test lita app01")
    assert cmd.action == action
    assert cmd.path == "sf.test.lita"
    assert cmd.node == "app01"


def test_trailing_whitespace_is_allowed(routes):
    """Whitespace after the last argument does not stop a match."""
    assert routes.match("lbcfg drain sf test lita app01   ").node == "app01"
    assert routes.match("lbcfg status sf test lita \t").balancer == "lita"


@pytest.mark.parametrize("body", [
    "lbcfg drain sf test lita web_01.prod",
    "lbcfg enable sf test lita app01 now",
    "lbcfg status sf test lita-extra",
    "lbcfg status sf test lita app01",
])
def test_trailing_text_does_not_match(routes, body):
    """Extra text never leaves a shorter node or balancer name behind."""
    assert routes.match(body) is None


def test_unknown_action_still_parses(routes):
    """Validation of the action name is the router's job."""
    cmd = routes.match("lbcfg invalid sf test lita app01")
    assert cmd.action == "invalid"


def test_match_is_case_insensitive(routes):
    """Prefix and action match in any case; fields come back lower-cased."""
    cmd = routes.match("LBCFG Drain SF Test LITA App-01")
    assert cmd.action == "drain"
    assert cmd.path == "sf.test.lita"
    assert cmd.node == "app-01"


def test_origin_is_carried(routes):
    """The origin passed in ends up on the Command."""
    assert routes.match("lbcfg status sf test lita", Origin.DIRECT).origin == Origin.DIRECT


@pytest.mark.parametrize("body", [
    "",
    "lbcfg",
    "lbcfg status sf test",
    "lbcfg drain sf test lita",
    "status sf test lita",
    "hello there",
])
def test_non_matching_bodies(routes, body):
    """Incomplete or unprefixed commands match no route."""
    assert routes.match(body) is None


def test_help(routes):
    """help matches only on its own."""
    assert routes.is_help("lbcfg help")
    assert routes.is_help("  LBCFG HELP ")
    assert not routes.is_help("lbcfg help me")
    assert not routes.is_help("help")


def test_custom_prefix():
    """A configured prefix replaces lbcfg in routes and usage."""
    routes = RouteTable("lb")
    assert routes.match("lb status sf test lita").path == "sf.test.lita"
    assert routes.match("lbcfg status sf test lita") is None
    assert routes.help_usage()["drain"] == "lb drain <region> <environment> <balancer> <node>"


def test_empty_prefix_accepts_bare_forms():
    """With no prefix the bare command forms are matched."""
    routes = RouteTable("")
    assert routes.match("status sf test lita").action == "status"
    assert routes.match("drain sf test lita app01").node == "app01"
    assert routes.is_help("help")
    assert routes.help_usage()["status"] == "status <region> <environment> <balancer>"
