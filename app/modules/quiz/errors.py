"""Quiz room errors.

Every error carries the message shown to the participant, so the session
layer and the HTTP layer can surface ``str(exc)`` as-is.
"""


class QuizError(Exception):
    """Base class for all room and collaborator failures."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class RoomNotFound(QuizError):
    default_message = "Room not found. Please check the code."

    def __init__(self, code: str, message: str | None = None):
        self.code = code
        super().__init__(message)


class RoomAlreadyExists(QuizError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Room {code} already exists")


class AlreadyStarted(QuizError):
    default_message = "This quiz is already in progress or has finished."


class InvalidTransition(QuizError):
    default_message = "That action is not available right now."


class NotHost(QuizError):
    default_message = "Only the host can start the quiz."


class PlayerNotFound(QuizError):
    default_message = "You are not a player in this room."

    def __init__(self, participant_id: str):
        self.participant_id = participant_id
        super().__init__()


class AnswerRejected(QuizError):
    default_message = "That answer could not be accepted."


class InvalidSettings(QuizError):
    default_message = "Those quiz settings are not allowed."


class GenerationFailed(QuizError):
    default_message = (
        "The AI failed to generate questions in the correct format. "
        "Please try a different topic or try again."
    )


class SummaryFailed(QuizError):
    default_message = (
        "Sorry, I couldn't generate a summary at this time. Please try again later."
    )


class ConnectionFailed(QuizError):
    default_message = "Could not connect to the service."
