"""meterwise — metered-usage billing reconciliation.

Periodically reconciles each active metered subscriber's unbilled usage
events against their current billing cycle, reports them to the metering
provider and records them as billed in the usage ledger.

Quick start::

    import asyncio

    from meterwise.database import async_session_factory
    from meterwise.metering.orchestrator import run_reconciliation
    from meterwise.providers.stripe import StripeMeteringProvider

    async def main():
        async with StripeMeteringProvider.from_settings() as provider:
            report = await run_reconciliation(async_session_factory, provider)
        print(report.units_billed)

    asyncio.run(main())
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
