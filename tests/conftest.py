import pytest

from vibeprompt.tree import FlatEntry, build_flat_tree


class FakeResponse:
    def __init__(self, status=200, json_data=None, body=b"", reason="OK"):
        self.status = status
        self.reason = reason
        self._json = json_data
        self._body = body

    async def json(self):
        return self._json

    async def read(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeHttp:
    """Stands in for aiohttp.ClientSession: url -> FakeResponse."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.requests = []
        self.closed = False

    def get(self, url, headers=None):
        self.requests.append((url, dict(headers or {})))
        return self.routes.get(url) or FakeResponse(status=404, reason="Not Found")

    async def close(self):
        self.closed = True


def flat_tree(files):
    """files: mapping of full path -> text (or bytes)."""
    entries = [
        FlatEntry(path=path, data=body if isinstance(body, bytes) else body.encode("utf-8"))
        for path, body in files.items()
    ]
    return build_flat_tree(entries)


@pytest.fixture
def project_files():
    return {
        "Proj/src/app.ts": "export const app = 1;\n",
        "Proj/src/utils/helpers.ts": "export function help() {}\n",
        "Proj/README.md": "# Proj\n",
    }


@pytest.fixture
def make_project_dir(tmp_path):
    def _make(files):
        for path, body in files.items():
            target = tmp_path / path
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(body, bytes):
                target.write_bytes(body)
            else:
                target.write_text(body, encoding="utf-8")
        root_name = next(iter(files)).split("/")[0]
        return tmp_path / root_name
    return _make
