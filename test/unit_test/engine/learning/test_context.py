from capmesh_ai.engine.learning import fallback_chain, hash_context


def test_hash_context_orders_coarse_fields():
    key = hash_context({"complexity": "high", "domain": "billing", "workflow_type": "etl"})
    assert key == "workflowType:etl|domain:billing|complexity:high"


def test_hash_context_fills_unknowns_and_appends_extras():
    key = hash_context({"domain": "crm"}, extra={"tenant": "acme"})
    assert key == "workflowType:unknown|domain:crm|complexity:unknown|tenant:acme"


def test_hash_context_escapes_separator():
    assert hash_context({"domain": "a|b"}).split("|")[1] == "domain:a/b"


def test_fallback_chain_drops_segments_right_to_left():
    assert fallback_chain("a|b|c") == ["a|b|c", "a|b", "a"]
    assert fallback_chain("solo") == ["solo"]
