from __future__ import annotations

import logging

import pytest

from core.proxy.upstream_resolver import UpstreamResolver, DEFAULT_UPSTREAMS


def test_default_mirror_ids_map_to_three_origins():
    resolver = UpstreamResolver()

    assert [prefix for prefix, _ in resolver.mappings] == ["/e/1/", "/e/2/", "/e/3/"]
    assert resolver.resolve("/e/2/foo/bar.unityweb") == (
        "https://raw.githubusercontent.com/3v1/V5-Assets/main/foo/bar.unityweb"
    )


def test_unmapped_mirror_id_resolves_to_none():
    resolver = UpstreamResolver()
    assert resolver.resolve("/e/9/x") is None
    assert resolver.resolve("/e/") is None
    assert resolver.resolve("/other/1/x") is None


@pytest.mark.parametrize("suffix", ["", "a", "a/b/c.png", "dir/", "%20space.txt"])
def test_prefix_plus_suffix_resolves_to_base_plus_suffix(suffix):
    resolver = UpstreamResolver([("/e/2/", "https://host/base/")])
    assert resolver.resolve("/e/2/" + suffix) == "https://host/base/" + suffix


def test_exact_prefix_resolves_to_origin_base():
    resolver = UpstreamResolver([("/e/1/", "https://host/root/")])
    assert resolver.resolve("/e/1/") == "https://host/root/"


def test_first_matching_prefix_wins():
    resolver = UpstreamResolver([
        ("/e/1/", "https://first/"),
        ("/e/1/special/", "https://second/"),
    ])
    assert resolver.resolve("/e/1/special/x") == "https://first/special/x"


def test_shadowed_prefix_logs_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="core.proxy.upstream_resolver"):
        UpstreamResolver([
            ("/e/", "https://all/"),
            ("/e/1/", "https://never/"),
        ])
    assert "shadowed" in caplog.text


def test_resolve_is_deterministic():
    resolver = UpstreamResolver(DEFAULT_UPSTREAMS)
    results = {resolver.resolve("/e/3/games/index.html") for _ in range(10)}
    assert results == {"https://raw.githubusercontent.com/3v1/V5-Retro/master/games/index.html"}


def test_empty_prefix_is_rejected():
    with pytest.raises(ValueError):
        UpstreamResolver([("", "https://host/")])
