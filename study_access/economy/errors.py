class AccessError(Exception):
    pass


class CodeNotFoundError(AccessError):
    pass


class CodeExpiredError(AccessError):
    pass


class CodeExhaustedError(AccessError):
    pass


class ClaimAlreadyUsedError(AccessError):
    pass


class ClaimNotReadyError(AccessError):
    pass


class ClaimMissingBillingError(AccessError):
    """Paid claim without a confirmed billing period; an upstream data defect."""


class ProviderError(AccessError):
    """The billing authority or payment processor call failed."""


class TrialNotActiveError(AccessError):
    pass


class TrialNotExpiredError(AccessError):
    pass
