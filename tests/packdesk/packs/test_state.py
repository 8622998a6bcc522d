import pytest

from packdesk.packs.manifest import ManifestPack
from packdesk.packs.state import (
    PackSessionState,
    PackState,
    PageState,
    buildTitle,
    computeHash,
    computePacksHash,
    createPackState,
    createSessionState,
)
from packdesk.packs.types import ConflictType, InstalledPack, InstalledPage, PackAction



def _baseline(manifest, installed=()):
    return createSessionState("main", "alice", manifest, installed)



# ----------------------------------------------------------------------
# Construction
# ----------------------------------------------------------------------

@pytest.mark.parametrize(
    "prefix, page, expected",
    [
        ("base", "Intro", "base/Intro"),
        ("Apps/Demo", "Main", "Apps/Demo/Main"),
        ("", "Readme", "Readme"),
        ("/trailing/", "X", "trailing/X"),
    ],
)
def test_buildTitle(prefix, page, expected):
    assert buildTitle(prefix, page) == expected



def test_createPackState_defaults_prefix_to_pack_name():
    pack = createPackState("base", ManifestPack(name="base", version="1.0.0", pages=("Intro",)))
    assert pack.prefix == "base"
    assert pack.pages["Intro"].defaultTitle == "base/Intro"
    assert pack.pages["Intro"].finalTitle == "base/Intro"
    assert pack.currentVersion is None
    assert pack.targetVersion == "1.0.0"
    assert pack.installed is False
    assert pack.action is PackAction.UNCHANGED



def test_createPackState_uses_installed_titles():
    installed = InstalledPack(name="base", version="0.9.0", packId=3, pages=(InstalledPage("Intro", "Custom Intro"),))
    pack = createPackState("base", ManifestPack(name="base", version="1.0.0", pages=("Intro", "Setup")), installed)
    assert pack.currentVersion == "0.9.0"
    assert pack.installed is True
    assert pack.pages["Intro"].finalTitle == "Custom Intro"
    assert pack.pages["Intro"].installed is True
    assert pack.pages["Setup"].finalTitle == "base/Setup"
    assert pack.pages["Setup"].installed is False



def test_createSessionState_covers_every_manifest_pack(manifest):
    state = _baseline(manifest)
    assert sorted(state.packs) == ["app", "base", "docs", "lib"]
    assert state.packs["docs"].pages["Readme"].defaultTitle == "Readme"
    assert state.actionedPacks() == {}



# ----------------------------------------------------------------------
# Hashing
# ----------------------------------------------------------------------

def test_hash_is_twelve_chars_and_stable(manifest):
    state = _baseline(manifest)
    assert len(state.hash) == 12
    assert state.hash == computeHash(state)
    assert _baseline(manifest).hash == state.hash



def test_hash_ignores_pack_and_page_insertion_order(manifest):
    state = _baseline(manifest)
    reordered = state.copy()
    reordered.packs = dict(reversed(list(reordered.packs.items())))
    reordered.packs["base"].pages = dict(reversed(list(reordered.packs["base"].pages.items())))
    assert reordered.hash == state.hash



def test_hash_ignores_bookkeeping_fields(manifest):
    state = _baseline(manifest)
    other = state.copy()
    other.userId = "bob"
    other.refId = "dev"
    other.timestamp += 1000
    assert other.hash == state.hash



@pytest.mark.parametrize(
    "mutate",
    [
        lambda s: s.packs["base"].setAction(PackAction.INSTALL),
        lambda s: setattr(s.packs["base"], "autoSelectedReason", "Required by lib"),
        lambda s: setattr(s.packs["base"], "currentVersion", "0.1.0"),
        lambda s: setattr(s.packs["base"], "targetVersion", "9.9.9"),
        lambda s: setattr(s.packs["base"], "prefix", "other"),
        lambda s: setattr(s.packs["base"], "installed", True),
        lambda s: setattr(s.packs["base"].pages["Intro"], "defaultTitle", "x"),
        lambda s: setattr(s.packs["base"].pages["Intro"], "finalTitle", "x"),
        lambda s: setattr(s.packs["base"].pages["Intro"], "hasConflict", True),
        lambda s: setattr(s.packs["base"].pages["Intro"], "conflictType", ConflictType.TITLE_EXISTS),
        lambda s: setattr(s.packs["base"].pages["Intro"], "installed", True),
        lambda s: s.packs["base"].pages.pop("Intro"),
        lambda s: s.packs.pop("docs"),
    ],
)
def test_any_tracked_mutation_changes_hash(manifest, mutate):
    state = _baseline(manifest)
    mutated = state.copy()
    mutate(mutated)
    assert mutated.hash != state.hash



def test_copy_is_deep(manifest):
    state = _baseline(manifest)
    clone = state.copy()
    clone.packs["base"].pages["Intro"].finalTitle = "changed"
    assert state.packs["base"].pages["Intro"].finalTitle == "base/Intro"



def test_wire_dicts_hash_like_objects(manifest):
    state = _baseline(manifest)
    state.packs["lib"].setAction(PackAction.INSTALL)
    assert computePacksHash(state.packsToDict()) == state.hash



# ----------------------------------------------------------------------
# Serialization
# ----------------------------------------------------------------------

def test_toDict_fromDict_roundtrip(manifest):
    state = _baseline(manifest)
    state.packs["lib"].setAction(PackAction.INSTALL, "Required by app")
    state.packs["lib"].pages["Guide"].hasConflict = True
    state.packs["lib"].pages["Guide"].conflictType = ConflictType.DUPLICATE_TITLE

    data = state.toDict()
    assert data["packs"]["lib"]["action"] == "install"
    assert data["packs"]["lib"]["pages"]["Guide"]["conflict_type"] == "duplicate_title"
    assert data["hash"] == state.hash

    again = PackSessionState.fromDict(data)
    assert again.hash == state.hash
    assert again.refId == "main" and again.userId == "alice"
    assert again.packs["lib"].pages["Guide"].conflictType is ConflictType.DUPLICATE_TITLE



def test_setAction_unchanged_clears_reason():
    pack = PackState()
    pack.setAction(PackAction.UPDATE, "Required by x")
    assert pack.isAuto and not pack.isManual
    pack.setAction(PackAction.UNCHANGED, "ignored")
    assert pack.autoSelectedReason is None
    assert not pack.isActioned



def test_pageState_fromDict_fills_titles():
    page = PageState.fromDict({}, name="Intro")
    assert page.name == "Intro"
    assert page.defaultTitle == "Intro"
    assert page.finalTitle == "Intro"
    assert page.conflictType is None
