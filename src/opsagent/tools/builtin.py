"""
Built-in utility tools.

Features:
- fetch_url: HTTP GET with a private-network guard (no redirects, 10s timeout,
  body truncated to 2000 characters)
- get_current_time: Current date and time in an IANA timezone
- calculator: Arithmetic over +, -, *, / and parentheses, evaluated from the
  AST (never eval)

Usage:
    registry = create_default_registry()
"""

from __future__ import annotations

import ast
import asyncio
import ipaddress
import logging
import operator
import socket
from datetime import datetime
from typing import Any, Optional, Union
from urllib.parse import urlsplit
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from pydantic import BaseModel, Field

from .registry import Tool, ToolRegistry

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_SECONDS = 10.0
BODY_TRUNCATE_CHARS = 2000


# ============================================
# fetch_url
# ============================================


class FetchUrlInput(BaseModel):
    url: str = Field(description="The URL to fetch")


IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def is_private_address(address: IPAddress) -> bool:
    """True for loopback, private, link-local, unspecified or reserved addresses."""
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return True
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
        or address.is_multicast
    )


async def _resolves_to_private(hostname: str) -> bool:
    """Resolve a hostname and report whether any address is private.

    DNS failures count as private.
    """
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as e:
        logger.debug(f"DNS lookup failed for {hostname}: {e}")
        return True

    for info in infos:
        raw = info[4][0].split("%", 1)[0]
        try:
            if is_private_address(ipaddress.ip_address(raw)):
                return True
        except ValueError:
            return True
    return False


async def is_private_url(raw_url: str) -> bool:
    """Return True if a URL must not be fetched.

    Blocks unparseable URLs, non-http(s) schemes, and hosts that are (or
    resolve to) private addresses.
    """
    try:
        parts = urlsplit(raw_url)
        hostname = parts.hostname
    except ValueError:
        return True

    if parts.scheme not in ("http", "https") or not hostname:
        return True

    try:
        return is_private_address(ipaddress.ip_address(hostname))
    except ValueError:
        pass

    return await _resolves_to_private(hostname)


async def fetch_url(args: FetchUrlInput) -> dict[str, Any]:
    if await is_private_url(args.url):
        raise ValueError("URL targets a private/internal host")

    async with httpx.AsyncClient(
        timeout=FETCH_TIMEOUT_SECONDS, follow_redirects=False
    ) as client:
        response = await client.get(args.url)

    if response.is_redirect:
        raise ValueError("URL redirects are not allowed")

    return {
        "status": response.status_code,
        "body": response.text[:BODY_TRUNCATE_CHARS],
    }


# ============================================
# get_current_time
# ============================================


class CurrentTimeInput(BaseModel):
    timezone: str = Field(default="UTC", description="Timezone (e.g., 'UTC', 'Europe/Berlin')")


async def get_current_time(args: CurrentTimeInput) -> dict[str, str]:
    try:
        tz = ZoneInfo(args.timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {args.timezone}") from e

    return {
        "datetime": datetime.now(tz).isoformat(timespec="seconds"),
        "timezone": args.timezone,
    }


# ============================================
# calculator
# ============================================


class CalculatorInput(BaseModel):
    expression: str = Field(
        description="Mathematical expression to evaluate (e.g., '2 + 2 * 3')"
    )


_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def evaluate_expression(expression: str) -> float:
    """Evaluate an arithmetic expression.

    Raises:
        ValueError: If the expression contains anything but numbers,
            + - * / and parentheses
        ZeroDivisionError: On division by zero
    """
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ValueError("Could not parse expression") from e

    def _eval(node: ast.AST) -> float:
        if isinstance(node, ast.Expression):
            return _eval(node.body)
        if isinstance(node, ast.Constant) and type(node.value) in (int, float):
            return node.value
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
            return _BINARY_OPS[type(node.op)](_eval(node.left), _eval(node.right))
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
            return _UNARY_OPS[type(node.op)](_eval(node.operand))
        raise ValueError("Invalid characters in expression")

    return _eval(tree)


async def calculator(args: CalculatorInput) -> dict[str, Union[float, str]]:
    try:
        return {"result": evaluate_expression(args.expression)}
    except ValueError as e:
        return {"result": f"Error: {e}"}
    except ZeroDivisionError:
        return {"result": "Error: Division by zero"}


# ============================================
# Registration
# ============================================


FETCH_URL_TOOL = Tool(
    name="fetch_url",
    description="Fetches content from a URL and returns the response body",
    input_model=FetchUrlInput,
    handler=fetch_url,
)

GET_CURRENT_TIME_TOOL = Tool(
    name="get_current_time",
    description="Returns the current date and time",
    input_model=CurrentTimeInput,
    handler=get_current_time,
)

CALCULATOR_TOOL = Tool(
    name="calculator",
    description="Evaluates a mathematical expression. Supports +, -, *, /, and parentheses.",
    input_model=CalculatorInput,
    handler=calculator,
)


def create_default_registry(extra: Optional[list[Tool]] = None) -> ToolRegistry:
    """Build a registry with the built-in tools, plus any extras."""
    registry = (
        ToolRegistry()
        .register(FETCH_URL_TOOL)
        .register(GET_CURRENT_TIME_TOOL)
        .register(CALCULATOR_TOOL)
    )
    for tool in extra or []:
        registry.register(tool)
    return registry
