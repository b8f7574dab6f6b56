from engine.idempotency import Idempotency


def test_idempotency_check_and_add():
    idem = Idempotency(max_keys=2)

    assert idem.check_and_add("k1")
    assert not idem.check_and_add("k1")
    assert idem.check_and_add("k2")
    assert idem.check_and_add("k3")
    assert not idem.exists("k1")


def test_idempotency_clear():
    idem = Idempotency()
    idem.add("k1")
    idem.clear()
    assert idem.check_and_add("k1")
