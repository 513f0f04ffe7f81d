"""
Distribution Module

Splits a payment breakdown among the investors who funded the paying loan.
Each investor's weight is the present value of their disbursement at the
earliest disbursement date; the platform pseudo-investor keeps every
commission along with the technology and late fees.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Any, Sequence

from .allocation import PaymentBreakdown
from .config import get_config
from .currency import round_amount
from .logging_config import get_logger, log_action
from .loans import Loan, Disbursement
from .rates import LoanRates, ONE, ZERO, days_between, growth_factor
from .valuation import confirmed_disbursements

logger = get_logger("peer_lending.distribution")


@dataclass
class InvestorShare:
    disbursement_id: Optional[str]
    investor_id: str
    is_platform: bool
    weight: Decimal
    capital: Decimal
    interest: Decimal
    commission: Decimal
    platform_income: Decimal  # Commissions and fees routed to the platform
    reinvest_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'disbursement_id': self.disbursement_id,
            'investor_id': self.investor_id,
            'is_platform': self.is_platform,
            'weight': str(self.weight),
            'capital': str(self.capital),
            'interest': str(self.interest),
            'commission': str(self.commission),
            'platform_income': str(self.platform_income),
            'reinvest_amount': str(self.reinvest_amount),
        }


@dataclass
class Distribution:
    shares: List[InvestorShare]
    total: Decimal
    drift: Decimal  # total minus the unrounded sum of shares

    @property
    def distributed(self) -> Decimal:
        return sum((share.reinvest_amount for share in self.shares), ZERO)

    def by_investor(self) -> Dict[str, Decimal]:
        totals = OrderedDict()
        for share in self.shares:
            totals[share.investor_id] = totals.get(share.investor_id, ZERO) + share.reinvest_amount
        return totals

    def source_breakdown(self) -> List[Dict[str, str]]:
        """Per-investor amounts in the shape stored on repayment disbursements"""
        return [
            {'investor_id': investor_id, 'amount': str(amount)}
            for investor_id, amount in self.by_investor().items()
            if amount > ZERO
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': str(self.total),
            'drift': str(self.drift),
            'shares': [share.to_dict() for share in self.shares],
            'source_breakdown': self.source_breakdown(),
        }


def participation_weights(disbursements: Sequence[Disbursement], loan: Loan) -> List[Decimal]:
    """PV of each disbursement at the earliest one, over the PV total"""
    rates = LoanRates.for_loan(loan)
    focal = min(d.disbursed_on for d in disbursements)
    present_values = [
        d.amount.amount / growth_factor(rates.participation_rate, days_between(focal, d.disbursed_on))
        for d in disbursements
    ]
    total = sum(present_values, ZERO)
    if total == ZERO:
        return [ZERO for _ in disbursements]
    return [value / total for value in present_values]


def distribute_breakdown(breakdown: PaymentBreakdown, disbursements: Sequence[Disbursement],
                         loan: Loan, payment_date: Optional[date] = None) -> Optional[Distribution]:
    """
    Per-investor reinvestment amounts for one payment.

    Returns None when the loan has no confirmed disbursements.
    """
    funded = confirmed_disbursements(disbursements)
    if not funded:
        return None

    config = get_config()
    commission_rate = Decimal(config.platform_commission_rate)
    tolerance = Decimal(config.distribution_tolerance)
    platform_id = config.platform_investor_id
    currency = loan.currency
    payment_date = payment_date or breakdown.payment_date
    rates = LoanRates.for_loan(loan)

    weights = participation_weights(funded, loan)

    interests = [breakdown.interest * weight for weight in weights]
    if breakdown.period <= 1:
        theoretical = [
            d.amount.amount * (growth_factor(rates.daily_rate, max(0, days_between(d.disbursed_on, payment_date))) - ONE)
            for d in funded
        ]
        theoretical_total = sum(theoretical, ZERO)
        if theoretical_total > ZERO:
            ratio = breakdown.interest / theoretical_total
            interests = [value * ratio for value in theoretical]

    shares: List[InvestorShare] = []
    commissions = ZERO
    for disbursement, weight, interest in zip(funded, weights, interests):
        is_platform = disbursement.investor_id == platform_id
        commission = ZERO if is_platform else interest * commission_rate
        commissions += commission
        shares.append(InvestorShare(
            disbursement_id=disbursement.id,
            investor_id=disbursement.investor_id,
            is_platform=is_platform,
            weight=weight,
            capital=breakdown.capital * weight,
            interest=interest,
            commission=commission,
            platform_income=ZERO,
            reinvest_amount=ZERO,
        ))

    platform = next((share for share in shares if share.is_platform), None)
    if platform is None:
        platform = InvestorShare(None, platform_id, True, ZERO, ZERO, ZERO, ZERO, ZERO, ZERO)
        shares.append(platform)
    platform.platform_income = commissions + breakdown.technology_fee + breakdown.late_fee

    unrounded = ZERO
    for share in shares:
        raw = share.capital + share.interest - share.commission
        if share is platform:
            raw += share.platform_income
        unrounded += raw
        share.reinvest_amount = round_amount(raw, currency)
        share.capital = round_amount(share.capital, currency)
        share.interest = round_amount(share.interest, currency)
        share.commission = round_amount(share.commission, currency)
        share.platform_income = round_amount(share.platform_income, currency)

    drift = breakdown.total - unrounded
    if abs(drift) > tolerance:
        log_action(logger, "warning", "Distribution does not reconcile with payment total",
                   action="distribute_breakdown", loan_id=loan.id,
                   extra={'total': str(breakdown.total), 'drift': str(drift)})

    residual = breakdown.total - sum((share.reinvest_amount for share in shares), ZERO)
    if residual != ZERO and abs(residual) <= tolerance:
        platform.reinvest_amount += residual

    return Distribution(shares=shares, total=breakdown.total, drift=drift)
