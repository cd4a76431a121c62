"""
TradeFlow Pools - Enforcement Layer Integration
Re-exports enforcement components and pool invariants for API usage
"""

from tfp_enforcement_v1 import (
    # Core enforcement
    Invariant,
    InvariantType,
    Criticality,
    InvariantEnforcer,
    DecisionLedger,
    EnforcementDecision,
    EnforcementResult,

    # Exceptions
    TradeFlowError,
    Unauthorized,
    NotFound,
    InvalidAmount,
    InvalidDueDate,
    BelowMinimum,
    WrongState,
    CapacityExceeded,
    AlreadyVerified,
    AlreadyDisbursed,
    InsufficientBalance,
    TransferFailed,
    InvariantViolation,
    SystemCompromised,

    # Logging
    logger
)

from tfp_pool_invariants_v1 import (
    # Receivable invariants
    UniqueReceivableIds,
    ValidReceivableTerms,
    VerificationComplete,

    # Pool invariants
    InvestedWithinTarget,
    InvestorCapRespected,
    ForwardOnlyStatus,
    DisbursementExactlyOnce,
    FeeSplitConserved,
    PaymentStatusConsistent,
    DistributionComplete,
    ClaimSupplyMatchesCapital,

    receivable_invariants,
    pool_invariants
)

# HTTP status for each error code
ERROR_STATUS = {
    Unauthorized.code: 403,
    NotFound.code: 404,
    InvalidAmount.code: 422,
    InvalidDueDate.code: 422,
    BelowMinimum.code: 422,
    WrongState.code: 409,
    CapacityExceeded.code: 409,
    AlreadyVerified.code: 409,
    AlreadyDisbursed.code: 409,
    InsufficientBalance.code: 409,
    TransferFailed.code: 402,
    InvariantViolation.code: 500,
}

__all__ = [
    'Invariant', 'InvariantType', 'Criticality', 'InvariantEnforcer',
    'DecisionLedger', 'EnforcementDecision', 'EnforcementResult',
    'TradeFlowError', 'Unauthorized', 'NotFound', 'InvalidAmount', 'InvalidDueDate',
    'BelowMinimum', 'WrongState', 'CapacityExceeded', 'AlreadyVerified',
    'AlreadyDisbursed', 'InsufficientBalance', 'TransferFailed',
    'InvariantViolation', 'SystemCompromised',
    'UniqueReceivableIds', 'ValidReceivableTerms', 'VerificationComplete',
    'InvestedWithinTarget', 'InvestorCapRespected', 'ForwardOnlyStatus',
    'DisbursementExactlyOnce', 'FeeSplitConserved', 'PaymentStatusConsistent',
    'DistributionComplete', 'ClaimSupplyMatchesCapital',
    'receivable_invariants', 'pool_invariants',
    'ERROR_STATUS', 'logger',
]
