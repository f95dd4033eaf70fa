import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from chat_stream_client.app_config import load_json_config, parse_app_config, resolve_runtime_env
from chat_stream_client.bootstrap import bootstrap_runtime
from chat_stream_client.shell import ChatShell


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.backend_name)
    if env.backend_env_var and not env.backend_api_key:
        print(f"{env.backend_env_var} environment variable is required.", file=sys.stderr)
        sys.exit(1)

    try:
        runtime = await bootstrap_runtime(app, env)
    except ValueError as ex:
        print(f"Configuration error: {ex}", file=sys.stderr)
        sys.exit(1)

    shell = ChatShell(runtime)

    print("chat-stream-client (type 'exit' to quit, '/help' for commands)")
    print(f"Backend: {app.backend_name} (model: {app.model})")
    mode = "guest" if runtime.context.is_guest else f"user {runtime.context.user_id}"
    print(f"Storage: {app.storage_backend} ({mode}, {len(runtime.state.sessions)} chats)")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = await asyncio.to_thread(input, "you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                await shell.handle(trimmed)
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
