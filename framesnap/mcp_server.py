"""MCP server exposing the framesnap export as a tool."""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .config import ExportConfig, ExportOptions
from .exporter import run_export

logger = logging.getLogger("framesnap.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="framesnap")


@mcp.tool()
async def export_app(
    url: str,
    keep_scripts: bool = False,
    inline_fonts: str = "icons",
) -> str:
    """Export the embedded app frame of a page and return the self-contained HTML."""

    with tempfile.TemporaryDirectory(prefix="framesnap-") as tmp_dir:
        config = ExportConfig(output_root=Path(tmp_dir))
        options = ExportOptions.from_mapping(
            {"keepScripts": keep_scripts, "inlineFonts": inline_fonts}
        )
        result = await run_export(url, config, options)
        return result.path.read_text(encoding="utf-8")


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
