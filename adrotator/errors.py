class AdRotatorError(Exception):
    pass


class LoadFailure(AdRotatorError):
    """Storage read failed; the current round is aborted."""


class WriteFailure(AdRotatorError):
    """Storage write failed during enqueue or state update."""


class PaymentFailure(AdRotatorError):
    """Payment API declined the charge or could not be reached."""

    def __init__(self, message: str, response: dict | None = None):
        super().__init__(message)
        self.response = response


class DeliveryFailure(AdRotatorError):
    """Posting the ad to the recipient channel failed."""


class RegistrationError(AdRotatorError):
    pass
