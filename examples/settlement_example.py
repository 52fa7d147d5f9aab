"""
Settlement Example

Run: python examples/settlement_example.py  (from the repo root)
"""

from combinators import batch, lift as L
from kungfu import Ok, Error

from onramp import balance as B, ledger as Lg, settlement as St
from examples._infra import (
    REJECTING_WALLET,
    FakeRefunds,
    FakeVenue,
    banner,
    paid,
    run,
)


def show(result) -> None:
    match result:
        case Ok(settled):
            replay = " (replay)" if settled.replayed else ""
            print(f"   Settled: {settled.amount} USDC, ref {settled.settlement_ref}{replay}")
        case Error(failure):
            print(f"   {failure.kind.name}: {failure.message}")
            if failure.refund is not None:
                print(f"   Refund ok: {failure.refund.succeeded}")


async def main() -> None:
    banner("Deposit Settlement")

    venue = FakeVenue()
    refunds = FakeRefunds()
    ledger = Lg.MemoryLedger()
    oracle = B.BalanceOracle(venue, ledger)
    orchestrator = St.DepositOrchestrator(ledger, oracle, venue, refunds)

    # 1. First delivery
    print("1. Paid checkout sess_1 (40 USDC):")
    show(await orchestrator.settle(paid("sess_1", "40")))
    print(f"   Transfers: {venue.transfer_count}\n")

    # 2. Redelivery
    print("2. Same event again:")
    show(await orchestrator.settle(paid("sess_1", "40")))
    print(f"   Transfers: {venue.transfer_count} (no new transfer!)\n")

    # 3. Concurrent redeliveries (5 via combinators.batch)
    print("3. Concurrent deliveries of sess_2 (5 requests):")
    before = venue.transfer_count
    await batch(
        range(5),
        handler=lambda _: L.catching_async(
            lambda: orchestrator.settle(paid("sess_2", "20")),
            on_error=str,
        ),
        concurrency=5,
    )
    print(f"   Transfers: {venue.transfer_count - before} (only 1!)\n")

    # 4. Over capacity
    print("4. sess_3 for 80 USDC with 40 left:")
    show(await orchestrator.settle(paid("sess_3", "80")))
    print()

    # 5. Rejected transfer
    print("5. sess_4 to a wallet the venue rejects:")
    show(await orchestrator.settle(paid("sess_4", "10", REJECTING_WALLET)))
    print(f"   Refunded captures: {refunds.refunded}\n")

    match await orchestrator.get_all_transaction_statuses():
        case Ok(statuses):
            print("Ledger:")
            for s in statuses:
                print(f"   {s.session_id}: {s.status.value} {s.amount} USDC")
        case Error(e):
            print(f"Ledger unavailable: {e.message}")


if __name__ == "__main__":
    run(main)
