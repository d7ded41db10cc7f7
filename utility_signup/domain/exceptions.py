"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidUtilityType(DomainException):
    """Utility type is not one of the supported services"""

    def __init__(self, utility_type: object):
        self.utility_type = utility_type
        super().__init__(f"Invalid utility type: {utility_type!r}")


class PropertyNotFound(DomainException):
    """Property referenced by a registration does not exist"""

    def __init__(self, property_id: int):
        self.property_id = property_id
        super().__init__(f"Property {property_id} not found")


class NoEligibleTariff(DomainException):
    """No API-capable provider has a current tariff for the utility type"""

    pass


class NoBankingDetails(DomainException):
    """Neither the requested nor a default banking record exists"""

    pass


class ContractNotFound(DomainException):
    """Utility contract does not exist"""

    def __init__(self, contract_id: int):
        self.contract_id = contract_id
        super().__init__(f"Contract {contract_id} not found")


class NotAwaitingVerification(DomainException):
    """Verification document uploaded while the contract is not blocked"""

    def __init__(self, contract_id: int, status: str):
        self.contract_id = contract_id
        self.status = status
        super().__init__(f"Contract {contract_id} is not awaiting verification (status: {status})")


class InvalidTransition(DomainException):
    """Requested status change is not allowed from the stored status"""

    def __init__(self, contract_id: int, current: str, target: str):
        self.contract_id = contract_id
        self.current = current
        self.target = target
        super().__init__(f"Contract {contract_id} cannot move from {current} to {target}")


class ProviderGatewayFailure(DomainException):
    """Provider API is unreachable or returned an error"""

    pass


class StaleComparisonFailure(DomainException):
    """Re-pricing a single contract failed during the deal sweep"""

    def __init__(self, contract_id: int, reason: str):
        self.contract_id = contract_id
        super().__init__(f"Deal comparison failed for contract {contract_id}: {reason}")


class NotificationFailure(DomainException):
    """Completion e-mail could not be delivered"""

    pass
