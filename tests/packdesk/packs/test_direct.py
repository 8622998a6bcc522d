import pytest

from packdesk.core.errors import DependencyError, InvalidArgumentError
from packdesk.packs.direct import installPacks, removePacks, updatePacks
from packdesk.packs.operations import OperationStatus, OperationType


USER = "alice"
REF = "main"



def test_install_queues_and_runs(services):
    result = installPacks(services, refId=REF, userId=USER, packNames=["base", "lib", "base"])

    assert result["status"] == "queued"
    assert result["summary"] == {"total_operations": 2, "packs": ["base", "lib"]}
    op = services.operations.get(result["operation_id"])
    assert op.type is OperationType.PACK_INSTALL
    assert result["operation_id"].startswith("pack_install_")

    services.worker.runPending()
    assert services.operations.get(result["operation_id"]).status is OperationStatus.SUCCESS
    lib = services.installedRegistry.getInstalled(REF, "lib")
    assert lib.version == "1.2.0"
    assert lib.dependsOn == ("base",)
    assert services.titleOracle.exists("lib/Guide")



@pytest.mark.parametrize("names", [[], ["", "  "]])
def test_install_needs_names(services, names):
    with pytest.raises(InvalidArgumentError, match="invalid or missing packs"):
        installPacks(services, refId=REF, userId=USER, packNames=names)



def test_install_checks(services, markInstalled):
    with pytest.raises(InvalidArgumentError, match="Packs not found in manifest: ghost"):
        installPacks(services, refId=REF, userId=USER, packNames=["docs", "ghost"])

    with pytest.raises(DependencyError) as excInfo:
        installPacks(services, refId=REF, userId=USER, packNames=["app"])
    assert excInfo.value.missing == {"app": ["lib"]}

    markInstalled("docs", "0.3.0")
    with pytest.raises(InvalidArgumentError, match="already installed, cannot install: docs"):
        installPacks(services, refId=REF, userId=USER, packNames=["docs"])

    assert services.jobQueue.pending() == 0



def test_update_keeps_recorded_titles(services, markInstalled):
    markInstalled("base", "0.9.0", pages=[("Intro", "Welcome")])

    result = updatePacks(services, refId=REF, userId=USER, packNames=["base"])
    services.worker.runPending()

    assert services.operations.get(result["operation_id"]).status is OperationStatus.SUCCESS
    base = services.installedRegistry.getInstalled(REF, "base")
    assert base.version == "1.0.0"
    assert base.pageTitle("Intro") == "Welcome"
    assert base.pageTitle("Setup") == "base/Setup"



def test_update_checks(services, markInstalled):
    with pytest.raises(InvalidArgumentError, match="not installed, cannot update: base"):
        updatePacks(services, refId=REF, userId=USER, packNames=["base"])

    markInstalled("base", "0.9.0")
    markInstalled("lib", "1.0.0", dependsOn=["base"])
    with pytest.raises(DependencyError) as excInfo:
        updatePacks(services, refId=REF, userId=USER, packNames=["base"])
    assert excInfo.value.blocking == {"base": ["lib"]}

    result = updatePacks(services, refId=REF, userId=USER, packNames=["base", "lib"])
    assert result["summary"]["packs"] == ["base", "lib"]



def test_remove(services, markInstalled):
    markInstalled("base", "1.0.0", pages=[("Intro", "base/Intro")])
    markInstalled("lib", "1.2.0", dependsOn=["base"])

    with pytest.raises(InvalidArgumentError, match="not installed, cannot remove: docs"):
        removePacks(services, refId=REF, userId=USER, packNames=["docs"])
    with pytest.raises(DependencyError, match="cannot remove base"):
        removePacks(services, refId=REF, userId=USER, packNames=["base"])

    result = removePacks(services, refId=REF, userId=USER, packNames=["lib", "base"])
    services.worker.runPending()

    assert services.operations.get(result["operation_id"]).type is OperationType.PACK_REMOVE
    assert services.installedRegistry.listInstalled(REF) == []
    assert not services.titleOracle.exists("base/Intro")



def test_inline_run_reports_final_status(services, writeSettings):
    writeSettings({"jobs": {"runInline": True}})
    result = installPacks(services, refId=REF, userId=USER, packNames=["docs"])

    assert result["status"] == "success"
    assert services.operations.get(result["operation_id"]).status is OperationStatus.SUCCESS
    assert services.installedRegistry.getInstalled(REF, "docs").version == "0.3.0"
