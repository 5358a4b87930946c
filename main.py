import anyio
import argparse
from pathlib import Path
from src.agentcore.cli import cmd_chat, cmd_migrate, cmd_references, cmd_rules, cmd_status, cmd_tools
from src.agentcore.utils.config import AgentCoreSettings
from src.utils.logger import configure_logging


def parse_args():
    parser = argparse.ArgumentParser(description="Agent runtime: tools, context and model providers")
    parser.add_argument(
        "--agent-dir", type=str, default=None,
        help="Agent directory holding agent.yaml (default: AGENT_CORE_AGENT_DIR or the current directory)"
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default=None
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # status
    sub.add_parser("status", help="Show agent, model and server summary")

    # tools
    tools = sub.add_parser("tools", help="Connect to tool servers and list their tools")
    tools.add_argument("--server", type=str, default=None, help="Filter to one server")

    # rules / references
    sub.add_parser("rules", help="List rules")
    sub.add_parser("references", help="List references")

    # chat
    chat = sub.add_parser("chat", help="Send one message to the agent")
    chat.add_argument("message", type=str)
    chat.add_argument("--provider", type=str, default=None)
    chat.add_argument("--model", type=str, default=None)

    # migrate
    sub.add_parser("migrate", help="Convert a legacy agent.json into agent.yaml")

    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    overrides = {}
    if args.agent_dir:
        overrides["agent_dir"] = args.agent_dir
    if args.log_level:
        overrides["log_level"] = args.log_level
    settings = AgentCoreSettings(**overrides)
    configure_logging(level=settings.log_level)
    agent_dir = Path(settings.agent_dir)

    if args.command == "status":
        print(cmd_status(agent_dir))

    elif args.command == "tools":
        async def _tools():
            return await cmd_tools(agent_dir, server_filter=args.server, settings=settings)
        print(anyio.run(_tools))

    elif args.command == "rules":
        print(cmd_rules(agent_dir))

    elif args.command == "references":
        print(cmd_references(agent_dir))

    elif args.command == "chat":
        async def _chat():
            return await cmd_chat(agent_dir, args.message, args.provider, args.model, settings=settings)
        print(anyio.run(_chat))

    elif args.command == "migrate":
        print(cmd_migrate(agent_dir))
