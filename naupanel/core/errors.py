"""Panel error taxonomy.

Every error that may cross the HTTP boundary subclasses ``PanelError`` and
carries the status code and machine code used by the JSON error handler.
"""

from __future__ import annotations


class PanelError(Exception):
    status_code = 500
    code = "internal_error"
    default_message = "Internal server error."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigInvalid(PanelError):
    code = "config_invalid"
    default_message = "Server configuration is invalid."


class RegistryUnavailable(PanelError):
    code = "no_servers"
    default_message = "No servers configured."


class ServerNotFound(PanelError):
    status_code = 404
    code = "server_not_found"
    default_message = "Server not found."


class InvalidRequest(PanelError):
    status_code = 400
    code = "invalid_request"
    default_message = "Invalid request."


class PathTraversal(InvalidRequest):
    code = "path_traversal"
    default_message = "Invalid path."


class FileNotFoundInServer(PanelError):
    status_code = 404
    code = "file_not_found"
    default_message = "File not found."


class FileOperationError(PanelError):
    code = "file_operation_failed"


class RconNotConfigured(PanelError):
    status_code = 400
    code = "rcon_not_configured"
    default_message = "RCON is not configured for this server."


class RconUnreachable(PanelError):
    status_code = 502
    code = "rcon_unreachable"
    default_message = "Unable to reach RCON."


class StatsUnavailable(PanelError):
    code = "stats_unavailable"
    default_message = "Server stats unavailable."
