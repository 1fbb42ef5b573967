from blobdir.compression import CompressionPolicy, DEFAULT_COMPRESSED_PATTERNS


def test_disabled_never_compresses():
    policy = CompressionPolicy.disabled()

    assert not policy.should_compress("_0.tis")
    assert not policy.should_compress("segments.gen")


def test_default_patterns():
    policy = CompressionPolicy(enabled=True)

    assert policy.patterns == DEFAULT_COMPRESSED_PATTERNS

    for name in ["_0.cfs", "_0.fdt", "_0.tis", "_1.prx", "_2.nrm"]:
        assert policy.should_compress(name)

    for name in ["segments.gen", "segments_2", "_0.del", "write.lock"]:
        assert not policy.should_compress(name)


def test_patterns_are_case_sensitive():
    policy = CompressionPolicy(enabled=True, patterns=["*.tis"])

    assert policy.should_compress("a.tis")
    assert not policy.should_compress("a.TIS")


def test_predicate_overrides_patterns():
    policy = CompressionPolicy(enabled=True, predicate=lambda name: name.startswith("x"))

    assert policy.should_compress("xyz")
    assert not policy.should_compress("_0.tis")


def test_disabled_ignores_predicate():
    policy = CompressionPolicy(enabled=False, predicate=lambda name: True)

    assert not policy.should_compress("anything")


def test_compress_decompress():
    data = b"term" * 10000

    compressed = CompressionPolicy.compress(data)

    assert len(compressed) < len(data)
    assert CompressionPolicy.decompress(compressed) == data
