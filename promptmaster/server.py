from mcp.server.fastmcp import FastMCP

from .config import db_path_from_env
from .library import PromptLibrary
from .tools.prompts import register_tools

mcp = FastMCP("promptmaster")


def main():
    library = PromptLibrary.open(db_path_from_env())
    register_tools(mcp, library)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
