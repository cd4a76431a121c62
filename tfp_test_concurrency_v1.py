"""
TradeFlow Pools (TFP) - Concurrency Tests

Concurrent invest calls on one pool must serialize: the target is crossed
once, the exporter is paid once, and no investor is over-accepted. Racing
verifiers on one receivable must leave exactly one verification.
"""

import threading

from tfp_config import usd
from tfp_e2e_integration_v1 import DAY
from tfp_enforcement_v1 import AlreadyVerified, CapacityExceeded, TradeFlowError
from tfp_pool_engine_v1 import PoolStatus


class TestConcurrentInvestments:

    def test_parallel_invests_disburse_once(self, platform, make_pool, fund):
        """20 threads race for 10 slots of $1,000."""
        pool = make_pool(target=usd(10_000), min_investment=usd(1_000), max_investment=usd(1_000))
        investors = [f"INV-{i:03d}" for i in range(20)]
        fund(usd(1_000), *investors)

        accepted = []
        rejected = []
        errors = []
        barrier = threading.Barrier(len(investors))

        def worker(investor):
            barrier.wait()
            try:
                accepted.append(platform.engine.invest(pool.id, investor, usd(1_000)))
            except CapacityExceeded as e:
                rejected.append(e)
            except TradeFlowError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(inv,)) for inv in investors]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(accepted) == 10
        assert len(rejected) == 10
        assert pool.status == PoolStatus.FUNDED
        assert pool.total_invested == pool.target_amount
        assert sum(1 for r in accepted if r.disbursement is not None) == 1
        assert platform.events.count("ExporterPaid", pool.id) == 1
        assert platform.currency.balance_of("EXP-001") == usd(9_700)
        assert platform.currency.balance_of(pool.escrow) == 0

    def test_independent_pools_in_parallel(self, platform, make_pool, fund):
        """Different pools progress concurrently without interfering."""
        pools = [make_pool(target=usd(5_000), max_investment=usd(5_000)) for _ in range(5)]
        fund(usd(5_000), *[f"INV-{i}" for i in range(5)])
        errors = []

        def worker(i):
            try:
                platform.engine.invest(pools[i].id, f"INV-{i}", usd(5_000))
            except TradeFlowError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert all(p.status == PoolStatus.FUNDED for p in pools)
        assert platform.currency.balance_of("EXP-001") == 5 * usd(4_850)
        assert platform.decision_ledger.verify_chain_integrity() == True


class TestConcurrentReceivables:

    def test_parallel_verification_happens_once(self, platform, clock):
        """Racing verifiers: one wins, the rest see AlreadyVerified."""
        rid = platform.receivables.create_receivable("EXP-001", "IMP-001", usd(10_000), clock.now + DAY)
        verified = []
        rejected = []
        errors = []
        barrier = threading.Barrier(8)

        def worker(risk_score):
            barrier.wait()
            try:
                platform.receivables.verify_receivable("AMC", rid, risk_score, 1000)
                verified.append(risk_score)
            except AlreadyVerified as e:
                rejected.append(e)
            except TradeFlowError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i * 10,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(verified) == 1
        assert len(rejected) == 7
        assert platform.receivables.get_receivable(rid).risk_score == verified[0]
        assert platform.events.count("ReceivableVerified") == 1

    def test_parallel_creates_are_all_kept(self, platform, clock):
        errors = []
        created = []

        def worker(i):
            try:
                created.append(platform.receivables.create_receivable(
                    "EXP-001", f"IMP-{i:03d}", usd(1_000), clock.now + DAY
                ))
            except TradeFlowError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(r.id for r in platform.receivables.list_receivables()) == sorted(created)
        assert len(platform.receivables.get_exporter_receivables("EXP-001")) == 10
