import asyncio
import json
import logging
import os
from typing import Any, AsyncIterator, Dict, List

from dotenv import load_dotenv
from openai import AsyncOpenAI

from toolbridge import (
    ConnectionPool,
    OpenAIHandbackAdapter,
    Settings,
    StreamingToolCallAssembler,
    ToolCatalog,
    ToolExecutionOrchestrator,
    load_server_configs,
    setup_logging,
)
from toolbridge.core.config import enabled_servers
from toolbridge.core.tools.streaming import AssembledTurn

# Load environment variables
load_dotenv()

MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")


async def stream_turn(client: AsyncOpenAI, history: List[Dict[str, Any]], catalog: ToolCatalog) -> AssembledTurn:
    """Stream one model turn and assemble its text and tool calls from the raw event stream."""
    async with client.chat.completions.with_streaming_response.create(
        model=MODEL,
        messages=history,  # type: ignore[arg-type]
        tools=catalog.tool_object or None,  # type: ignore[arg-type]
        stream=True,
    ) as response:

        async def lines() -> AsyncIterator[str]:
            async for line in response.iter_lines():
                yield line + "\n"

        return await StreamingToolCallAssembler(catalog).aconsume(lines())


async def confirm(prompt: str) -> bool:
    answer = await asyncio.to_thread(input, prompt)
    return answer.strip().lower() in ("y", "yes")


async def main() -> None:
    """
    Chat with an OpenAI model that may call tools of the configured servers.
    Every tool call is confirmed on the command line before it runs.
    """
    setup_logging(logging.WARNING)
    print("Welcome to the toolbridge CLI Chat!")

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        print("Error: OPENAI_API_KEY not found in environment variables.")
        return

    settings = Settings.from_env()
    if settings.config_path is None:
        print("Error: TOOLBRIDGE_CONFIG_PATH must point to a server configuration file.")
        return
    servers = enabled_servers(load_server_configs(settings.config_path))

    client = AsyncOpenAI(api_key=api_key)
    catalog = ToolCatalog(namespaced=True)

    async with ConnectionPool(settings.pool, settings.protocol) as pool:
        for server in servers:
            connection = await pool.get_connection(server)
            if connection.is_connected:
                count = catalog.register_server_tools(server.id, connection.tools)
                print(f"Connected to {server.display_name} ({count} tools).")
            else:
                print(f"Could not connect to {server.display_name}: {connection.last_error}")

        orchestrator = ToolExecutionOrchestrator(pool, servers, settings.orchestrator, catalog=catalog)
        # completion is triggered explicitly after the last confirmation
        orchestrator.auto_complete = False

        history: List[Dict[str, Any]] = [{"role": "system", "content": "You are a helpful assistant."}]

        print("\nStart chatting! Type 'exit' or 'quit' to stop.")
        while True:
            user_input = (await asyncio.to_thread(input, "\nYou: ")).strip()
            if user_input.lower() in ["exit", "quit"]:
                print("Goodbye!")
                break
            if not user_input:
                continue

            history.append({"role": "user", "content": user_input})
            try:
                turn = await stream_turn(client, history, catalog)
                if turn.error:
                    print(f"Stream error: {turn.error}")
                    continue
                if not turn.has_tool_calls:
                    print(f"Assistant: {turn.content}")
                    history.append({"role": "assistant", "content": turn.content})
                    continue

                orchestrator.adapter = OpenAIHandbackAdapter(
                    client, MODEL, history, assistant_content=turn.content or None
                )
                await orchestrator.submit(turn.tool_calls)
                for call in turn.tool_calls:
                    if call.parse_error:
                        print(f"Warning: {call.parse_error}")
                    if await confirm(f"Run {call.name}({json.dumps(call.arguments)})? [y/N] "):
                        result = await orchestrator.confirm_and_run(call.id)
                        print(f"  -> {result.state.value}{': ' + result.error if result.error else ''}")
                    else:
                        await orchestrator.skip(call.id)

                await orchestrator.complete_batch()
                if orchestrator.last_handback_error is not None:
                    print(f"An error occurred: {orchestrator.last_handback_error}")
                    continue

                message = orchestrator.last_handback.choices[0].message
                print(f"Assistant: {message.content}")
                history.append({"role": "assistant", "content": message.content})

            except Exception as e:
                print(f"An error occurred: {e}")
                await orchestrator.cancel_batch()


if __name__ == "__main__":
    asyncio.run(main())
