class MeetingError(Exception):
    """Base class for failures raised by the meeting engine."""


class InvalidInput(MeetingError):
    pass


class InvalidState(MeetingError):
    pass


class NotAuthorized(MeetingError):
    pass


class LookupFailure(MeetingError):
    pass


class DeliveryFailure(MeetingError):
    pass


class ConfigurationError(MeetingError):
    pass
