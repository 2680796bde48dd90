"""
MCP (Model Context Protocol) server for spreadsheet calculation services.

This module implements an MCP server that exposes published services as
tools that can be called by AI agents. It provides the same execution
pipeline as the REST API but through the MCP protocol.

MCP Tools:
    - list_services: List published services and their parameters
    - get_service: Get the input and output definitions of a service
    - execute_service: Execute a service with inputs
    - validate_inputs: Validate inputs without executing
    - clear_cache: Drop cached compiled models

Example:
    To run the MCP server:
        python -m spreadcalc.mcp_server

    Or programmatically:
        from spreadcalc.mcp_server import run_mcp_server
        run_mcp_server()
"""

import asyncio
import json
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    TextContent,
    Tool,
)
from pydantic import ValidationError

from spreadcalc.config import configure_logging, settings
from spreadcalc.exceptions.calculation_exceptions import SpreadCalcError
from spreadcalc.models.execution_models import ExecutionError, ExecutionRequest
from spreadcalc.services.calculation_service import CalculationService
from spreadcalc.services.service_store import FileServiceStore


class MCPCalculationServer:
    """
    MCP server implementation for calculation services.

    This class wraps the CalculationService and the FileServiceStore and
    exposes them through the MCP protocol.

    The server implements:
        - list_tools: Returns the available service operations as MCP tools
        - call_tool: Executes a specific operation

    Attributes:
        service: The underlying CalculationService instance.
        store: The FileServiceStore holding published services.
        server: The MCP Server instance.

    Example:
        mcp_server = MCPCalculationServer()
        await mcp_server.run()
    """

    def __init__(
        self,
        service: CalculationService | None = None,
        store: FileServiceStore | None = None,
    ) -> None:
        """
        Initialize the MCP Calculation Server.

        Args:
            service: Optional CalculationService. If None, one is built
                from the application settings.
            store: Optional FileServiceStore. If None, one is opened on
                the configured services directory.
        """
        self.service = service or CalculationService.from_settings(settings)
        self.store = store or FileServiceStore(
            settings.get_services_path(),
            on_change=self.service.invalidate,
        )
        self.server = Server("spreadcalc-mcp-server")
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Set up MCP request handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """Return the list of available tools."""
            return self._get_tools()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            """Execute a tool and return the result."""
            result = await self._execute_tool(name, arguments)
            return [TextContent(type="text", text=json.dumps(result, default=str, indent=2))]

    def _get_tools(self) -> list[Tool]:
        """
        Get the list of available tools.

        Returns:
            List of MCP Tool definitions.
        """
        service_id_schema = {
            "type": "string",
            "description": "Id of the published service",
        }
        inputs_schema = {
            "type": "object",
            "description": (
                "Input values keyed by parameter name or title. Percentages "
                "may be given as '5%', 5 or 0.05."
            ),
            "additionalProperties": True,
        }

        return [
            Tool(
                name="list_services",
                description="List the published calculation services with their inputs and outputs.",
                inputSchema={
                    "type": "object",
                    "properties": {},
                },
            ),
            Tool(
                name="get_service",
                description=(
                    "Get the input and output definitions of a calculation service, "
                    "including types, bounds, allowed values and defaults."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "service_id": service_id_schema,
                    },
                    "required": ["service_id"],
                },
            ),
            Tool(
                name="execute_service",
                description=(
                    "Execute a calculation service. Inputs are validated and written "
                    "to the spreadsheet model, and the output cells are returned."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "service_id": service_id_schema,
                        "inputs": inputs_schema,
                        "nocache": {
                            "type": "boolean",
                            "description": "Build a fresh model instead of using the cached one",
                            "default": False,
                        },
                    },
                    "required": ["service_id"],
                },
            ),
            Tool(
                name="validate_inputs",
                description=(
                    "Check inputs against a service's parameter definitions without "
                    "executing it. Returns the coerced values or the validation errors."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "service_id": service_id_schema,
                        "inputs": inputs_schema,
                    },
                    "required": ["service_id"],
                },
            ),
            Tool(
                name="clear_cache",
                description=(
                    "Drop cached compiled models, for one service or for all services "
                    "when service_id is omitted."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "service_id": service_id_schema,
                    },
                },
            ),
        ]

    async def _execute_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Execute a tool by name with the given arguments.

        Args:
            name: Tool name.
            arguments: Tool arguments.

        Returns:
            ``{"success": True, "data": ...}`` or ``{"success": False, "error": ...}``.
        """
        try:
            if name == "list_services":
                services = [
                    self.store.get(service_id).model_dump(mode="json")
                    for service_id in self.store.list_ids()
                ]
                return {"success": True, "data": {"services": services}}

            elif name == "get_service":
                descriptor = self.store.get(arguments["service_id"])
                return {"success": True, "data": descriptor.model_dump(mode="json")}

            elif name == "execute_service":
                descriptor = self.store.get(arguments["service_id"])
                request = ExecutionRequest(
                    inputs=arguments.get("inputs") or {},
                    request_info={"method": "MCP", "tool": name},
                    nocache=arguments.get("nocache", False),
                )
                result = self.service.execute(
                    descriptor,
                    request.inputs,
                    request.request_info,
                    nocache=request.nocache,
                )
                if isinstance(result, ExecutionError):
                    return {"success": False, "error": result.to_dict()}
                return {"success": True, "data": result.to_dict()}

            elif name == "validate_inputs":
                descriptor = self.store.get(arguments["service_id"])
                report = self.service.validate(descriptor, arguments.get("inputs") or {})
                return {"success": report.valid, "data": report.to_dict()}

            elif name == "clear_cache":
                cleared = self.service.invalidate(arguments.get("service_id"))
                return {"success": True, "data": {"cleared": cleared}}

            else:
                return {
                    "success": False,
                    "error": {
                        "error": "UNKNOWN_TOOL",
                        "message": f"Unknown tool: {name}",
                    },
                }

        except SpreadCalcError as e:
            return {
                "success": False,
                "error": e.to_dict(),
            }
        except KeyError as e:
            return {
                "success": False,
                "error": {
                    "error": "INVALID_ARGUMENTS",
                    "message": f"Missing argument: {e.args[0]}",
                },
            }
        except ValidationError as e:
            return {
                "success": False,
                "error": {
                    "error": "INVALID_ARGUMENTS",
                    "message": str(e),
                },
            }

    async def run(self) -> None:
        """
        Run the MCP server using stdio transport.

        This method starts the server and blocks until it is terminated.
        It uses stdin/stdout for communication with the MCP client.
        """
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )


def run_mcp_server() -> None:
    """
    Run the MCP calculation server.

    This is the entry point for running the MCP server from the command line.

    Example:
        python -m spreadcalc.mcp_server
    """
    configure_logging()
    server = MCPCalculationServer()
    asyncio.run(server.run())


if __name__ == "__main__":
    run_mcp_server()
