"""Exception types shared by the engines and the CLI."""


class ConfigError(ValueError):
    """Invalid or missing configuration, raised before any engine starts."""


class InvalidAddress(ConfigError):
    pass


class RpcError(Exception):
    """JSON-RPC envelope carried a non-null ``error`` object."""

    def __init__(self, code: int, message: str):
        super().__init__(f"rpc error: {code} {message}")
        self.code = code
        self.message = message


class RpcResponseError(Exception):
    """Response body was not JSON, or the result had an unexpected shape."""


class ChainPollError(RuntimeError):
    pass
