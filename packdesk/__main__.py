# packdesk/__main__.py
from __future__ import annotations
import argparse
from pathlib import Path

from packdesk.app.settings import settings
from packdesk.packs.manifest import FileManifestSource
from packdesk.packs.service import PackServices



def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="packdesk", description="Serve the pack session API.")
    parser.add_argument("--manifests", type=Path, default=settings("packs.manifestDir", "manifests"),
                        help="Directory holding <ref>.json5 manifests")
    parser.add_argument("--host", default=settings("http.host", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(settings("http.port", 8420)))
    args = parser.parse_args(argv)

    import uvicorn
    from packdesk.app.factory import createApp

    services = PackServices.inMemory()
    services.manifestSource = FileManifestSource(Path(args.manifests))
    uvicorn.run(createApp(services=services), host=args.host, port=args.port, log_config=None)



if __name__ == "__main__":
    main()
