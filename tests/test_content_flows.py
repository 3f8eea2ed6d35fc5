import pytest

from cmscore.content.models import EMPTY_LANGUAGE, VersionStatus
from cmscore.errors import DocumentNotFound, PartialBatchFailure, ValidationError

from conftest import PAGE_TYPE, USER


async def primary_count(store, content_id: str, language: str) -> int:
    return await store.versions.count({"content_id": content_id, "language": language, "is_primary": True})


# ── create ───────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_create_content_at_root(service, make_page):
    page = await make_page("Home", url_segment="home")

    assert page["parent_id"] is None
    assert page["parent_path"] is None
    assert page["ancestors"] == []
    assert page["kind"] == "page"
    assert page["master_language_id"] == "en"
    assert page["status"] == VersionStatus.CHECKED_OUT
    assert page["is_primary"] is True
    assert page["url_segment"] == "home"

    branch = await service.get_content(page["id"], "en")
    assert branch["name"] == "Home"
    assert branch["version_id"] == page["version_id"]


@pytest.mark.asyncio
async def test_create_child_marks_parent(service, make_page):
    parent = await make_page("Parent")
    child = await make_page("Child", parent["id"])

    assert child["ancestors"] == [parent["id"]]
    assert child["parent_path"] == f",{parent['id']},"
    assert (await service.get_content(parent["id"], "en"))["has_children"] is True


@pytest.mark.asyncio
async def test_create_validates_input(service, make_page):
    with pytest.raises(ValidationError):
        await service.execute_create_content_flow({"content_type": PAGE_TYPE, "name": "x"}, "", USER)
    with pytest.raises(ValidationError) as err:
        await service.execute_create_content_flow({"content_type": "Unknown", "name": "x"}, "en", USER)
    assert err.value.field == "content_type"
    with pytest.raises(DocumentNotFound):
        await make_page("Orphan", "missing-parent")


@pytest.mark.asyncio
async def test_folders_use_the_empty_language(service, make_page):
    folder = await service.execute_create_folder_flow("Assets", "0", USER)
    await make_page("Home")

    assert folder["name"] == "Assets"
    assert folder["content_type"] is None
    assert (await service.get_content(folder["id"]))["name"] == "Assets"
    assert [f["id"] for f in await service.get_folder_children("0")] == [folder["id"]]
    assert [c["name"] for c in await service.get_content_children("0", "en")] == ["Home"]
    assert await service.get_content_versions(folder["id"]) == []
    assert folder["master_language_id"] == EMPTY_LANGUAGE


@pytest.mark.asyncio
async def test_children_without_branch_are_node_only(service, make_page):
    page = await make_page("Home")

    children = await service.get_content_children(None, "sv")
    assert [c["id"] for c in children] == [page["id"]]
    assert "name" not in children[0]


@pytest.mark.asyncio
async def test_add_language(service, store, make_page):
    page = await make_page("Home")
    sv = await service.execute_create_language_flow(page["id"], "sv", {"name": "Hem"}, USER)

    assert sv["language"] == "sv"
    assert sv["is_primary"] is True
    assert (await service.get_content(page["id"], "sv"))["name"] == "Hem"
    assert (await service.get_content(page["id"], "en"))["name"] == "Home"
    assert await primary_count(store, page["id"], "en") == 1

    with pytest.raises(ValidationError):
        await service.execute_create_language_flow(page["id"], "sv", {"name": "Igen"}, USER)


# ── reads ────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_get_content_filters_and_projects(service, make_page):
    page = await make_page("Home", properties={"heading": "Hi"})

    with pytest.raises(DocumentNotFound) as err:
        await service.get_content(page["id"], "en", statuses=[VersionStatus.PUBLISHED])
    assert err.value.entity == "ContentLanguage"

    with pytest.raises(DocumentNotFound) as err:
        await service.get_content("missing", "en")
    assert err.value.entity == "Content"

    assert await service.get_content(page["id"], "en", fields=["name"]) == {"id": page["id"], "name": "Home"}


@pytest.mark.asyncio
async def test_get_content_version_defaults_to_primary(service, make_page):
    page = await make_page("Home")

    detail = await service.get_content_version(page["id"], None, "en")
    assert detail["version_id"] == page["version_id"]

    with pytest.raises(DocumentNotFound):
        await service.get_content_version(page["id"], None, "sv")

    other = await make_page("Other")
    with pytest.raises(DocumentNotFound):
        await service.get_content_version(page["id"], other["version_id"], "en")


# ── update / publish ─────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_create_publish_edit_publish(service, store, make_page):
    page = await make_page("Home")
    v1 = page["version_id"]
    versions = await service.get_content_versions(page["id"])
    assert [(v["id"], v["is_primary"], v["status"]) for v in versions] == [(v1, True, VersionStatus.CHECKED_OUT)]

    published = await service.execute_publish_content_flow(page["id"], v1, USER)
    assert published["status"] == VersionStatus.PUBLISHED
    branch = await service.get_content(page["id"], "en")
    assert branch["version_id"] == v1
    assert branch["status"] == VersionStatus.PUBLISHED

    draft = await service.execute_update_content_flow(page["id"], v1, USER, {"name": "Home v2"})
    v2 = draft["version_id"]
    assert v2 != v1
    assert draft["master_version_id"] == v1
    assert draft["is_primary"] is True
    assert draft["status"] == VersionStatus.CHECKED_OUT
    untouched = await service.versions.find_by_id(v1)
    assert (untouched.name, untouched.status) == ("Home", VersionStatus.PUBLISHED)
    # the live projection still shows the published version
    assert (await service.get_content(page["id"], "en"))["name"] == "Home"

    await service.execute_publish_content_flow(page["id"], v2, USER)
    assert (await service.versions.find_by_id(v2)).status == VersionStatus.PUBLISHED
    assert (await service.versions.find_by_id(v1)).status == VersionStatus.PREVIOUSLY_PUBLISHED
    branch = await service.get_content(page["id"], "en", statuses=[VersionStatus.PUBLISHED])
    assert (branch["version_id"], branch["name"]) == (v2, "Home v2")
    assert await primary_count(store, page["id"], "en") == 1


@pytest.mark.asyncio
async def test_draft_is_edited_in_place(service, make_page):
    page = await make_page("Home")

    saved = await service.execute_update_content_flow(page["id"], page["version_id"], "other", {"name": "Start"})

    assert saved["version_id"] == page["version_id"]
    assert saved["saved_by"] == "other"
    assert len(await service.get_content_versions(page["id"])) == 1
    assert (await service.get_content(page["id"], "en"))["name"] == "Start"


@pytest.mark.asyncio
async def test_second_fork_does_not_steal_primary(service, make_page):
    page = await make_page("Home")
    v1 = page["version_id"]
    await service.execute_publish_content_flow(page["id"], v1, USER)

    first = await service.execute_update_content_flow(page["id"], v1, USER, {"name": "a"})
    second = await service.execute_update_content_flow(page["id"], v1, USER, {"name": "b"})

    assert first["is_primary"] is True
    assert second["is_primary"] is False


@pytest.mark.asyncio
async def test_publish_of_non_draft_is_a_no_op(service, make_page):
    page = await make_page("Home")
    await service.execute_publish_content_flow(page["id"], page["version_id"], USER)

    again = await service.execute_publish_content_flow(page["id"], page["version_id"], "someone-else")

    assert again["status"] == VersionStatus.PUBLISHED
    assert again["published_by"] == USER


@pytest.mark.asyncio
async def test_version_must_belong_to_content(service, make_page):
    page = await make_page("Home")
    other = await make_page("Other")

    with pytest.raises(DocumentNotFound):
        await service.execute_update_content_flow(page["id"], other["version_id"], USER, {"name": "x"})
    with pytest.raises(DocumentNotFound):
        await service.execute_publish_content_flow(page["id"], other["version_id"], USER)


@pytest.mark.asyncio
async def test_set_primary_version(service, store, make_page):
    page = await make_page("Home")
    v1 = page["version_id"]
    await service.execute_publish_content_flow(page["id"], v1, USER)
    draft = await service.execute_update_content_flow(page["id"], v1, USER, {"name": "x"})

    result = await service.set_primary_version(v1)

    assert result["is_primary"] is True
    assert not (await service.versions.find_by_id(draft["version_id"])).is_primary
    assert await primary_count(store, page["id"], "en") == 1


# ── trash ────────────────────────────────────────────────────────────────────
@pytest.fixture
async def tree(make_page):
    # r ─ a ─ a1 ─ a11
    #   └ b
    r = await make_page("r")
    a = await make_page("a", r["id"])
    a1 = await make_page("a1", a["id"])
    a11 = await make_page("a11", a1["id"])
    b = await make_page("b", r["id"])
    return {n["name"]: n["id"] for n in (r, a, a1, a11, b)}


@pytest.mark.asyncio
async def test_move_to_trash_cascades_to_subtree_only(service, tree):
    await service.execute_move_content_to_trash_flow(tree["a"], USER)

    for name in ("a", "a1", "a11"):
        node = await service.hierarchy.get_node(tree[name], include_deleted=True)
        assert node.is_deleted is True
        assert node.deleted_by == USER
        with pytest.raises(DocumentNotFound):
            await service.get_content(tree[name], "en")
    for name in ("r", "b"):
        assert (await service.get_content(tree[name], "en"))["is_deleted"] is False
    assert (await service.get_content(tree["r"], "en"))["has_children"] is True

    await service.execute_move_content_to_trash_flow(tree["b"], USER)
    assert (await service.get_content(tree["r"], "en"))["has_children"] is False


@pytest.mark.asyncio
async def test_move_to_trash_reports_partial_failure(service, tree, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("storage unavailable")

    monkeypatch.setattr(service.hierarchy, "mark_subtree_deleted", broken)

    with pytest.raises(PartialBatchFailure) as err:
        await service.execute_move_content_to_trash_flow(tree["a"], USER)

    assert err.value.failed_keys == [f"descendants of {tree['a']}"]
    assert err.value.succeeded == [tree["a"]]
    assert (await service.hierarchy.get_node(tree["a"], include_deleted=True)).is_deleted is True
    assert (await service.hierarchy.get_node(tree["a1"])).is_deleted is False


@pytest.mark.asyncio
async def test_move_to_trash_restamps_already_trashed_descendants(service, tree):
    await service.execute_move_content_to_trash_flow(tree["a11"], "first-user")

    await service.execute_move_content_to_trash_flow(tree["a"], USER)

    a = await service.hierarchy.get_node(tree["a"], include_deleted=True)
    a11 = await service.hierarchy.get_node(tree["a11"], include_deleted=True)
    assert a11.deleted_by == USER
    assert a11.deleted_at == a.deleted_at


# ── cut ──────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_cut_moves_subtree_and_keeps_relative_structure(service, tree, make_page):
    target = await make_page("t")

    moved = await service.execute_cut_content_flow(tree["a"], target["id"], USER)

    t = target["id"]
    assert moved["parent_id"] == t
    assert moved["parent_path"] == f",{t},"
    a1 = await service.get_content(tree["a1"], "en")
    a11 = await service.get_content(tree["a11"], "en")
    assert a1["parent_id"] == tree["a"]
    assert a1["ancestors"] == [t, tree["a"]]
    assert a11["parent_path"] == f",{t},{tree['a']},{tree['a1']},"
    assert (await service.get_content(t, "en"))["has_children"] is True
    # r still has b
    assert (await service.get_content(tree["r"], "en"))["has_children"] is True


@pytest.mark.asyncio
async def test_cut_to_root_and_old_parent_flag(service, tree):
    await service.execute_cut_content_flow(tree["b"], None, USER)
    await service.execute_cut_content_flow(tree["a"], "0", USER)

    a11 = await service.get_content(tree["a11"], "en")
    assert a11["parent_path"] == f",{tree['a']},{tree['a1']},"
    assert (await service.get_content(tree["a"], "en"))["parent_path"] is None
    assert (await service.get_content(tree["r"], "en"))["has_children"] is False


@pytest.mark.asyncio
async def test_cut_into_own_descendant_is_rejected(service, tree):
    with pytest.raises(ValidationError):
        await service.execute_cut_content_flow(tree["a"], tree["a11"], USER)
    with pytest.raises(ValidationError):
        await service.execute_cut_content_flow(tree["a"], tree["a"], USER)

    assert (await service.get_content(tree["a11"], "en"))["parent_path"] == (
        f",{tree['r']},{tree['a']},{tree['a1']},"
    )


@pytest.mark.asyncio
async def test_cut_rewrites_trashed_descendants(service, tree):
    await service.execute_move_content_to_trash_flow(tree["a11"], USER)

    await service.execute_cut_content_flow(tree["a"], tree["b"], USER)

    a11 = await service.hierarchy.get_node(tree["a11"], include_deleted=True)
    assert a11.parent_path == f",{tree['r']},{tree['b']},{tree['a']},{tree['a1']},"


@pytest.mark.asyncio
async def test_cut_requires_existing_target(service, tree):
    with pytest.raises(DocumentNotFound):
        await service.execute_cut_content_flow(tree["a"], "missing", USER)


@pytest.mark.asyncio
async def test_cut_reports_descendants_left_behind(service, store, tree, monkeypatch):
    update_one = store.contents.update_one

    async def flaky(filter, values):
        if filter.get("id") == tree["a11"]:
            raise RuntimeError("write conflict")
        return await update_one(filter, values)

    monkeypatch.setattr(store.contents, "update_one", flaky)

    with pytest.raises(PartialBatchFailure) as err:
        await service.execute_cut_content_flow(tree["a"], tree["b"], USER)

    assert err.value.operation == "reparent_descendants"
    assert err.value.failed_keys == [tree["a11"]]
    assert err.value.succeeded == [tree["a1"]]
    assert (await service.get_content(tree["a1"], "en"))["ancestors"] == [tree["r"], tree["b"], tree["a"]]


@pytest.mark.asyncio
async def test_cut_reports_an_aborted_descendant_batch(service, store, tree, monkeypatch):
    async def connection_lost(ops):
        raise ConnectionError("connection reset")

    monkeypatch.setattr(store.contents, "bulk_update", connection_lost)

    with pytest.raises(PartialBatchFailure) as err:
        await service.execute_cut_content_flow(tree["a"], tree["b"], USER)

    assert err.value.operation == "reparent_descendants"
    assert err.value.failed_keys == [tree["a1"], tree["a11"]]
    assert err.value.succeeded == []
    assert isinstance(err.value.__cause__, ConnectionError)
    # the node itself was already moved
    assert (await service.get_content(tree["a"], "en"))["parent_id"] == tree["b"]


# ── copy ─────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_copy_duplicates_live_subtree(service, store, tree, make_page):
    await service.execute_move_content_to_trash_flow(tree["a11"], USER)
    target = await make_page("t")

    copied = await service.execute_copy_content_flow(tree["a"], target["id"], USER)

    assert copied["id"] != tree["a"]
    assert copied["parent_id"] == target["id"]
    assert copied["ancestors"] == [target["id"]]
    descendants = await service.hierarchy.descendants_of(await service.hierarchy.get_node(copied["id"]))
    assert len(descendants) == 1
    a1_copy = descendants[0]
    assert a1_copy.parent_id == copied["id"]
    assert a1_copy.parent_path == f",{target['id']},{copied['id']},"

    for content_id, name in ((copied["id"], "a"), (a1_copy.id, "a1")):
        assert (await service.get_content(content_id, "en"))["name"] == name
        assert await primary_count(store, content_id, "en") == 1
    assert (await service.get_content(target["id"], "en"))["has_children"] is True
    # source untouched
    assert (await service.get_content(tree["a"], "en"))["parent_id"] == tree["r"]


@pytest.mark.asyncio
async def test_copy_into_own_subtree_terminates(service, store, tree):
    before = await store.contents.count({})

    copied = await service.execute_copy_content_flow(tree["a"], tree["a1"], USER)

    # a, a1, a11 once each
    assert await store.contents.count({}) == before + 3
    assert copied["parent_id"] == tree["a1"]
    assert copied["ancestors"] == [tree["r"], tree["a"], tree["a1"]]


@pytest.mark.asyncio
async def test_copy_reports_failed_children(service, tree, monkeypatch):
    latest = service.versions.latest_versions_by_language

    async def flaky(content_id):
        if content_id == tree["b"]:
            raise RuntimeError("read timeout")
        return await latest(content_id)

    monkeypatch.setattr(service.versions, "latest_versions_by_language", flaky)

    with pytest.raises(PartialBatchFailure) as err:
        await service.execute_copy_content_flow(tree["r"], None, USER)

    assert err.value.operation == "copy_content"
    assert err.value.failed_keys == [tree["b"]]
    assert sorted(err.value.succeeded) == sorted([tree["r"], tree["a"], tree["a1"], tree["a11"]])


@pytest.mark.asyncio
async def test_copy_folder_keeps_versionless_branch(service, make_page):
    folder = await service.execute_create_folder_flow("Assets", None, USER)
    await make_page("Inside", folder["id"])

    copied = await service.execute_copy_content_flow(folder["id"], None, USER)

    assert copied["content_type"] is None
    assert copied["has_children"] is True
    assert [f["name"] for f in await service.get_folder_children(None)] == ["Assets", "Assets"]
    assert await service.get_content_versions(copied["id"]) == []
    children = await service.get_content_children(copied["id"], "en")
    assert [c["name"] for c in children] == ["Inside"]
