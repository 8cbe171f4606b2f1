"""MCP server exposing LocalAssist tools."""

from mcp.server.fastmcp import FastMCP
import httpx

mcp = FastMCP("localassist")
BROKER = "http://localhost:8000"


@mcp.tool()
async def ask(
    text: str,
    session_id: str | None = None,
    conversation_context: str | None = None,
) -> dict:
    """Answer an utterance, drawing on stored memories when relevant.

    Statements worth remembering are stored; questions are answered from
    memory and the local language model.

    Args:
        text: What the user said
        session_id: Conversation session identifier
        conversation_context: Recent conversation text

    Returns:
        Response with the answer, intent and per-step results
    """
    async with httpx.AsyncClient(timeout=60.0) as client:
        r = await client.post(f"{BROKER}/process", json={
            "text": text,
            "session_id": session_id,
            "conversation_context": conversation_context,
        })
        return r.json()


@mcp.tool()
async def route(text: str) -> dict:
    """Classify an utterance's intent and entities without acting on it."""
    async with httpx.AsyncClient(timeout=30.0) as client:
        r = await client.post(f"{BROKER}/route", json={"text": text})
        return r.json()


if __name__ == "__main__":
    mcp.run()
