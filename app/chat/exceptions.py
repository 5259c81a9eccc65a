INTERNAL_ERROR_MESSAGE = "Internal server error"


class ChatError(Exception):
    """Base class for errors raised by the chat pipeline."""
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ClientInputError(ChatError):
    status_code = 400


class ChatNotFoundError(ChatError):
    status_code = 404


class ChatAccessDeniedError(ChatError):
    status_code = 403


class LimitExceededError(ChatError):
    status_code = 429


class PersistenceError(ChatError):
    """A message store read or write failed."""


class StreamProtocolError(ChatError):
    """The completion engine reported a failed tool invocation."""
    user_message = "Something went wrong while generating the response. Please try again."


class ToolNotAvailableError(StreamProtocolError):
    user_message = "The AI tried to use a tool that is not available. Please try again."


class InvalidToolArgumentsError(StreamProtocolError):
    user_message = "The AI called a tool with invalid arguments. Please try rephrasing your request."


class ToolExecutionError(StreamProtocolError):
    user_message = "A tool encountered an error during execution. Please try again."
