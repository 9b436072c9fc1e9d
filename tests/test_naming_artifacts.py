import pytest

from sandbox.artifacts import (
    classify_build_output,
    deployment_base_path,
    mime_type_for,
    rewrite_asset_references,
)
from sandbox.file_tree import build_file_tree
from sandbox.naming import derive_label_selector, derive_preview_url, derive_workload_name


class TestNaming:
    def test_names_are_pure_functions_of_project_id(self):
        assert derive_workload_name("abc") == "proj-abc"
        assert derive_workload_name("abc") == derive_workload_name("abc")
        assert derive_label_selector("abc") == "project=proj-abc"

    def test_preview_url_uses_domain(self):
        assert derive_preview_url("abc", "games.test") == "https://proj-abc.games.test"

    def test_empty_project_id_rejected(self):
        with pytest.raises(ValueError):
            derive_workload_name("")


class TestBuildClassification:
    def test_success_marker_wins(self):
        result = classify_build_output("vite v5\n✓ 42 modules transformed.\n✓ built in 1.23s")
        assert result.success

    def test_error_without_marker_fails(self):
        result = classify_build_output("src/main.ts(3,1): error TS2304")
        assert not result.success
        assert "error" in result.reason

    def test_silent_output_fails(self):
        result = classify_build_output("")
        assert not result.success
        assert result.reason == "Build output has no success marker"


class TestArtifacts:
    def test_mime_types(self):
        assert mime_type_for("index.html") == "text/html"
        assert mime_type_for("assets/app.JS") == "application/javascript"
        assert mime_type_for("assets/model.glb") in {"model/gltf-binary", "application/octet-stream"}
        assert mime_type_for("blob.unknownext") == "application/octet-stream"

    def test_index_html_root_refs_rewritten(self):
        html = b'<script type="module" src="/assets/index.js"></script><link rel="icon" href="/vite.svg">'
        out = rewrite_asset_references("index.html", html, "p1").decode()
        assert 'src="/deployments/p1/dist/assets/index.js"' in out
        assert 'href="/deployments/p1/dist/vite.svg"' in out

    def test_js_asset_paths_rewritten(self):
        js = b'const a = "/assets/tex.png"; const b = "/vite.svg";'
        out = rewrite_asset_references("assets/index.js", js, "p1").decode()
        assert '"/deployments/p1/dist/assets/tex.png"' in out
        assert '"/deployments/p1/dist/vite.svg"' in out

    def test_other_files_untouched(self):
        css = b'body { background: url("/assets/bg.png"); }'
        assert rewrite_asset_references("assets/style.css", css, "p1") == css

    def test_nested_html_not_rewritten(self):
        html = b'<img src="/a.png">'
        assert rewrite_asset_references("docs/page.html", html, "p1") == html

    def test_base_path(self):
        assert deployment_base_path("p1", "sites") == "/sites/p1/dist"


class TestFileTree:
    def test_builds_nested_tree_regardless_of_order(self):
        lines = ["f ./src/main.ts", "d ./src", "f ./package.json", "d ./src/lib", "f ./src/lib/x.ts"]
        tree = [n.to_dict() for n in build_file_tree(lines)]
        by_path = {n["path"]: n for n in tree}
        assert set(by_path) == {"src", "package.json"}
        src = by_path["src"]
        assert src["type"] == "directory"
        child_paths = {c["path"] for c in src["children"]}
        assert child_paths == {"src/main.ts", "src/lib"}
        lib = next(c for c in src["children"] if c["path"] == "src/lib")
        assert [c["path"] for c in lib["children"]] == ["src/lib/x.ts"]

    def test_ignores_malformed_lines(self):
        assert build_file_tree(["", "x ./a", "f .", "garbage"]) == []

    def test_files_have_no_children_key(self):
        (node,) = build_file_tree(["f ./a.txt"])
        assert "children" not in node.to_dict()
