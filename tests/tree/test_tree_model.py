"""Tests for the lazily expanded repository tree model."""

from __future__ import annotations

import asyncio

import pytest

from docsynth.errors import ProviderRequestFailed, UnknownRepository
from docsynth.models import FetchState, Node, SelectedFile, TriState
from docsynth.stores.cache import CacheKey
from docsynth.tree.model import TreeModel, iter_file_paths


@pytest.fixture
def model(fake_client, cache, sleeper) -> TreeModel:
    return TreeModel(fake_client, cache, throttle=0.2, sleep=sleeper)


@pytest.fixture
def seeded(fake_client, repo):
    fake_client.add_listing(repo, None, "README.md", "src/")
    fake_client.add_listing(repo, "src", "src/index.ts", "src/lib/")
    fake_client.add_listing(repo, "src/lib", "src/lib/util.ts")
    return fake_client


@pytest.mark.asyncio
async def test_fetch_root_merges_listing_and_seeds_selection(model, seeded, repo, sleeper) -> None:
    model.add_repository(repo)

    nodes = await model.fetch_directory(repo)

    assert [node.path for node in nodes] == ["README.md", "src"]
    assert [node.path for node in model.roots(repo)] == ["README.md", "src"]
    assert model.selection(repo) == {"README.md": False}
    assert model.fetch_state(repo) is FetchState.LOADED
    assert model.cache_status(repo) is False
    assert sleeper.delays == [0.2]


@pytest.mark.asyncio
async def test_second_model_reads_listing_from_cache(model, seeded, repo, cache, sleeper) -> None:
    model.add_repository(repo)
    await model.fetch_directory(repo)

    other = TreeModel(seeded, cache, throttle=0.2, sleep=sleeper)
    other.add_repository(repo)
    await other.fetch_directory(repo)

    assert seeded.list_calls == [("acme/widgets", "")]
    assert other.cache_status(repo) is True
    assert [node.path for node in other.roots(repo)] == ["README.md", "src"]


@pytest.mark.asyncio
async def test_concurrent_fetches_share_one_request(model, seeded, repo) -> None:
    model.add_repository(repo)

    first, second = await asyncio.gather(
        model.fetch_directory(repo),
        model.fetch_directory(repo),
    )

    assert seeded.list_calls == [("acme/widgets", "")]
    assert [node.path for node in first] == [node.path for node in second]


@pytest.mark.asyncio
async def test_failed_fetch_can_be_retried(model, seeded, repo) -> None:
    model.add_repository(repo)
    await model.fetch_directory(repo)
    seeded.list_errors[("acme/widgets", "src")] = ProviderRequestFailed(404, "Not Found")

    with pytest.raises(ProviderRequestFailed):
        await model.fetch_directory(repo, "src")
    assert model.fetch_state(repo, "src") is FetchState.FAILED

    del seeded.list_errors[("acme/widgets", "src")]
    await model.fetch_directory(repo, "src")

    assert model.fetch_state(repo, "src") is FetchState.LOADED
    src = model.find_node(repo, "src")
    assert src is not None
    assert [child.path for child in src.children or ()] == ["src/index.ts", "src/lib"]


@pytest.mark.asyncio
async def test_select_unexpanded_folder_fetches_every_level(model, seeded, repo) -> None:
    model.add_repository(repo)
    await model.fetch_directory(repo)
    src = model.find_node(repo, "src")

    failed = await model.toggle_subtree(repo, [src], True)

    assert failed == []
    assert model.selection(repo) == {
        "README.md": False,
        "src/index.ts": True,
        "src/lib/util.ts": True,
    }
    assert model.fetch_state(repo, "src/lib") is FetchState.LOADED
    assert model.folder_selection_state(repo, model.roots(repo)) is TriState.INDETERMINATE


@pytest.mark.asyncio
async def test_flags_are_committed_after_unloaded_folders_are_fetched(
    model, seeded, repo
) -> None:
    model.add_repository(repo)
    await model.fetch_directory(repo)
    observed = []

    async def check_flags(path: str) -> None:
        if path == "src/lib":
            observed.append(
                (model.is_selected(repo, "README.md"), model.is_selected(repo, "src/index.ts"))
            )

    seeded.on_list = check_flags

    await model.toggle_subtree(repo, model.roots(repo), True)

    assert observed == [(False, False)]
    assert model.is_selected(repo, "src/index.ts")
    assert model.is_selected(repo, "src/lib/util.ts")


@pytest.mark.asyncio
async def test_directory_named_root_is_tracked_apart_from_repository_root(
    model, fake_client, repo, cache
) -> None:
    fake_client.add_listing(repo, None, "README.md", "root/")
    fake_client.add_listing(repo, "root", "root/app.py")
    model.add_repository(repo)
    await model.fetch_directory(repo)

    assert model.fetch_state(repo, "root") is FetchState.NOT_REQUESTED
    failed = await model.toggle_subtree(repo, [model.find_node(repo, "root")], True)

    assert failed == []
    assert fake_client.list_calls == [("acme/widgets", ""), ("acme/widgets", "root")]
    assert model.selection(repo) == {"README.md": False, "root/app.py": True}
    assert [node.path for node in model.roots(repo)] == ["README.md", "root"]
    assert cache.get(CacheKey.repo_tree(repo, "root")) == [
        {"name": "app.py", "path": "root/app.py", "type": "file", "sha": None},
    ]
    assert len(cache.get(CacheKey.repo_tree(repo))) == 2


@pytest.mark.asyncio
async def test_select_subtree_skips_branch_that_fails(model, seeded, repo) -> None:
    model.add_repository(repo)
    await model.fetch_directory(repo)
    seeded.list_errors[("acme/widgets", "src/lib")] = ProviderRequestFailed(404, "Not Found")

    failed = await model.toggle_subtree(repo, model.roots(repo), True)

    assert failed == ["src/lib"]
    assert model.is_selected(repo, "README.md")
    assert model.is_selected(repo, "src/index.ts")
    assert not model.is_selected(repo, "src/lib/util.ts")


@pytest.mark.asyncio
async def test_deselect_does_not_fetch(model, seeded, repo) -> None:
    model.add_repository(repo)
    await model.fetch_directory(repo)

    await model.toggle_subtree(repo, model.roots(repo), False)

    assert seeded.list_calls == [("acme/widgets", "")]
    assert model.selection(repo) == {"README.md": False}


def test_folder_selection_state_aggregates_file_flags(model, repo) -> None:
    model.add_repository(repo)
    folder = Node.directory(
        "src",
        (Node.file("src/a.ts"), Node.directory("src/lib", (Node.file("src/lib/b.ts"),))),
    )
    model.merge_listing(repo, [folder])

    assert model.folder_selection_state(repo, folder.children) is TriState.UNSELECTED
    model.toggle_file(repo, "src/a.ts", True)
    assert model.folder_selection_state(repo, folder.children) is TriState.INDETERMINATE
    model.toggle_file(repo, "src/lib/b.ts", True)
    assert model.folder_selection_state(repo, folder.children) is TriState.SELECTED
    assert model.folder_selection_state(repo, ()) is TriState.UNSELECTED


def test_iter_file_paths_is_lazy() -> None:
    tree = (Node.file("a"), Node.directory("d", (Node.file("d/b"),)), Node.file("c"))
    paths = iter_file_paths(tree)

    assert next(paths) == "a"
    assert next(paths) == "d/b"
    assert list(paths) == ["c"]


def test_merge_listing_preserves_flags_and_loaded_subtrees(model, repo) -> None:
    model.add_repository(repo)
    model.merge_listing(repo, [Node.file("README.md"), Node.directory("src")])
    model.merge_listing(repo, [Node.file("src/a.ts")], "src")
    model.toggle_file(repo, "src/a.ts", True)
    model.toggle_file(repo, "README.md", True)

    model.merge_listing(repo, [Node.file("README.md"), Node.directory("src"), Node.file("NEW.md")])

    src = model.find_node(repo, "src")
    assert src is not None
    assert [child.path for child in src.children or ()] == ["src/a.ts"]
    assert model.selection(repo) == {"README.md": True, "src/a.ts": True, "NEW.md": False}


def test_merge_listing_ignores_duplicate_entries(model, repo) -> None:
    model.add_repository(repo)

    model.merge_listing(repo, [Node.file("a.md"), Node.file("a.md"), Node.file("b.md")])

    assert [node.path for node in model.roots(repo)] == ["a.md", "b.md"]


@pytest.mark.asyncio
async def test_toggle_expansion_fetches_once(model, seeded, repo) -> None:
    model.add_repository(repo)
    await model.fetch_directory(repo)
    src = model.find_node(repo, "src")

    assert await model.toggle_expansion(repo, src) is True
    assert await model.toggle_expansion(repo, src) is False
    assert await model.toggle_expansion(repo, src) is True

    assert seeded.list_calls == [("acme/widgets", ""), ("acme/widgets", "src")]
    assert model.is_expanded(repo, "src")


@pytest.mark.asyncio
async def test_malformed_cached_listing_is_evicted_and_refetched(model, seeded, repo, cache) -> None:
    cache.set(CacheKey.repo_tree(repo), [{"name": 3}])
    model.add_repository(repo)

    await model.fetch_directory(repo)

    assert seeded.list_calls == [("acme/widgets", "")]
    assert model.cache_status(repo) is False
    assert cache.get(CacheKey.repo_tree(repo)) == [
        {"name": "README.md", "path": "README.md", "type": "file", "sha": None},
        {"name": "src", "path": "src", "type": "dir", "sha": None},
    ]


@pytest.mark.asyncio
async def test_listing_for_removed_repository_is_discarded(model, repo, cache, sleeper) -> None:
    release = asyncio.Event()

    class GatedClient:
        async def list_directory(self, repository, path=None):
            await release.wait()
            return [Node.file("README.md")]

    gated = TreeModel(GatedClient(), cache, throttle=0, sleep=sleeper)  # type: ignore[arg-type]
    gated.add_repository(repo)
    task = asyncio.ensure_future(gated.fetch_directory(repo))
    await asyncio.sleep(0)

    gated.remove_repository(repo)
    gated.add_repository(repo)
    release.set()
    await task

    assert gated.roots(repo) == ()
    assert gated.selection(repo) == {}


def test_selected_files_follow_insertion_order(model, repo) -> None:
    model.add_repository(repo)
    model.merge_listing(repo, [Node.file("b.ts", sha="bbb"), Node.file("a.ts", sha="aaa")])

    model.toggle_file(repo, "a.ts", True)
    model.toggle_file(repo, "b.ts", True)

    assert model.selected_files() == [
        SelectedFile(repo, "b.ts", "bbb"),
        SelectedFile(repo, "a.ts", "aaa"),
    ]


def test_unknown_repository_is_rejected(model, repo) -> None:
    with pytest.raises(UnknownRepository):
        model.roots(repo)
    assert model.add_repository(repo) is True
    assert model.add_repository(repo) is False
