# examples/buildfile.py

"""
Example buildfile for a small static site (_dev sources -> _build output).

    taskweave -f examples/buildfile.py run build
    taskweave -f examples/buildfile.py watch --initial dev
    TASKWEAVE_PROFILE=build taskweave -f examples/buildfile.py watch --initial build

The dev profile serves _dev; the build profile rebuilds into _build and
serves it on port 4000.

Stylesheet/script/image transforms shell out to the usual node tools; the
orchestration (ordering, watching, reload) is taskweave's.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

from taskweave.core.context import TaskContext
from taskweave.core.errors import StageError
from taskweave.core.project import Project
from taskweave.stages import files


def _tool(ctx: TaskContext, *argv: str) -> None:
    ctx.log.debug("$ %s", " ".join(argv))
    proc = subprocess.run(argv, capture_output=True, text=True)
    if proc.returncode != 0:
        raise StageError(proc.stderr.strip() or f"{argv[0]} exited with {proc.returncode}")


def configure(project: Project) -> None:
    project.paths.update(
        dev=Path("_dev"),
        dev_sass=Path("_dev/assets/sass"),
        dev_css=Path("_dev/assets/css"),
        dev_js=Path("_dev/assets/javascript"),
        dev_img=Path("_dev/assets/images"),
        build=Path("_build"),
        build_css=Path("_build/assets/css"),
        build_js=Path("_build/assets/javascript"),
        build_img=Path("_build/assets/images"),
    )
    p = project.path
    g = project.graph

    def dev_sass(ctx: TaskContext) -> None:
        _tool(ctx, "npx", "sass", "--style=expanded", str(p("dev_sass") / "styles.scss"), str(p("dev_css") / "styles.css"))
        _tool(ctx, "npx", "postcss", str(p("dev_css") / "styles.css"), "--use", "autoprefixer", "--replace", "--map")

    def dev_js(ctx: TaskContext) -> None:
        sources = [p("dev_js") / "app" / "myScript.js"]
        out = p("dev_js") / "app.js"
        out.write_text("\n".join(s.read_text("utf-8") for s in sources), "utf-8")
        ctx.log.info("Concatenated %d file(s) into %s", len(sources), out)

    def build_css(ctx: TaskContext) -> None:
        p("build_css").mkdir(parents=True, exist_ok=True)
        _tool(
            ctx, "npx", "postcss", str(p("dev_css") / "styles.css"),
            "--use", "autoprefixer", "--use", "cssnano", "-o", str(p("build_css") / "styles.css"),
        )

    def build_js(ctx: TaskContext) -> None:
        p("build_js").mkdir(parents=True, exist_ok=True)
        out = p("build_js") / "app.js"
        _tool(ctx, "npx", "babel", "--presets", "@babel/env", str(p("dev_js") / "app.js"), "-o", str(out))
        _tool(ctx, "npx", "terser", str(out), "-o", str(out))

    def build_images(ctx: TaskContext) -> None:
        _tool(ctx, "npx", "imagemin", str(p("dev_img")), f"--out-dir={p('build_img')}")

    g.task("clean", files.clean(p("build")))
    g.task("sass", dev_sass)
    g.task("js", dev_js)
    g.task("html", files.copy("**/*.html", p("build"), base=p("dev")))
    g.task("php", files.copy("**/*.php", p("build"), base=p("dev")))
    g.task("csslib", files.copy("**/*.css", p("build_css") / "lib", base=p("dev_css") / "lib"))
    g.task("jslib", files.copy("**/*.js", p("build_js") / "lib", base=p("dev_js") / "lib"))
    g.task("css:min", build_css)
    g.task("js:min", build_js)
    g.task("img", build_images)

    g.series("css", "csslib", "css:min")
    g.series("scripts", "jslib", "js:min")
    g.parallel("assets", "html", "php", "css", "scripts", "img")
    g.series("rebuild", "clean", "js", "assets")
    g.series("build", "rebuild")
    g.parallel("dev", "sass", "js")
    g.series("sass:build", "sass", "css")
    g.series("js:build", "js", "scripts")

    if getattr(project.settings, "profile", "dev") == "build":
        _build_profile(project)
    else:
        _dev_profile(project)


def _dev_profile(project: Project) -> None:
    """Recompile into _dev and reload the browser."""
    project.default_target = "dev"
    project.serve_root = project.path("dev")

    project.watch("_dev/**/*.html", reload="full")
    project.watch("_dev/**/*.php", reload="full")
    project.watch("_dev/assets/javascript/app/**/*.js", "js", reload="full")
    project.watch("_dev/assets/sass/**/*.scss", "sass", reload="style")
    project.watch("_dev/assets/css/**/*.css", reload="style")


def _build_profile(project: Project) -> None:
    """Rebuild into _build and serve the result on its own port."""
    project.default_target = "build"
    project.serve_root = project.path("build")
    project.serve_port = 4000

    project.watch("_dev/**/*.html", "html", reload="full")
    project.watch("_dev/**/*.php", "php", reload="full")
    # app.js itself is js:build output.
    project.watch("_dev/assets/javascript/{app,lib}/**/*.js", "js:build", reload="full")
    # styles.css is sass:build output.
    project.watch("_dev/assets/css/lib/**/*.css", "css", reload="full")
    project.watch("_dev/assets/sass/**/*.scss", "sass:build", reload="full")
    project.watch("_dev/assets/images/**/*", "img", events=("created",), settle=0.5, reload="full")
