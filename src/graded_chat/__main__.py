import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from graded_chat.app_config import load_json_config, parse_app_config
from graded_chat.bootstrap import bootstrap_runtime
from graded_chat.commands.chat_commands import ChatCommands
from graded_chat.credentials import ANTHROPIC, EnvCredentialStore
from graded_chat.errors import ChatEngineError, SendInProgressError
from graded_chat.spinner import Spinner

_LINE_PREFIX = "assistant> "


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    credentials = EnvCredentialStore()
    runtime = bootstrap_runtime(app, credentials)
    service = runtime.service
    commands = ChatCommands(service, line_prefix=_LINE_PREFIX)
    router = commands.build_router()

    print("graded-chat (type 'exit' to quit, '/help' for commands)")
    routing = "auto (Haiku/Sonnet)" if service.auto_routing else service.model
    print(f"Model: {routing}")
    print("Tools:")
    for t in runtime.tools:
        print(f"  - {t.name}")
    print(f"Database: {runtime.memory_store.db_path}")
    print(f"Session: {service.current_session} (threshold {service.threshold}, {len(service.messages)} messages)")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    if credentials.get_credential(ANTHROPIC) is None:
        print(f"Set {credentials.env_var_for(ANTHROPIC)} in the environment or .env to talk to the model.")
    print()

    try:
        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue
            if await router.try_handle(trimmed):
                queued = commands.take_queued_message()
                if queued is None:
                    continue
                trimmed = queued

            spinner = Spinner(prefix=_LINE_PREFIX)
            print()
            sys.stdout.write(_LINE_PREFIX)
            sys.stdout.flush()

            def on_text_chunk(chunk: str) -> None:
                spinner.stop()
                sys.stdout.write(chunk)
                sys.stdout.flush()

            try:
                reply = await service.send_message(
                    trimmed,
                    commands.take_pending_images(),
                    on_text_chunk=on_text_chunk,
                    on_tool_activity=spinner.show,
                    model=commands.take_forced_model(),
                )
                print(
                    f"\n{_LINE_PREFIX}[{reply.model_used} | {reply.input_tokens:,} in / {reply.output_tokens:,} out]\n"
                )
            except SendInProgressError as ex:
                print(f"\n{_LINE_PREFIX}{ex}\n")
            except ChatEngineError as ex:
                print(f"\n{_LINE_PREFIX}Error: {ex}\n")
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
            finally:
                spinner.stop()
    finally:
        await runtime.aclose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
