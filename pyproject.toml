[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ibcfrontrun"
version = "0.1.0"
description = "Experiments that measure front-running opportunities in IBC packet relaying between two local Cosmos chains"
requires-python = ">=3.10"
dependencies = []
keywords = ["ibc", "cosmos", "relayer", "front-running", "mev", "testbed"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ibcfrontrun-validate = "ibcfrontrun.validate:main"
ibcfrontrun-case1 = "ibcfrontrun.case1:main"
ibcfrontrun-case2 = "ibcfrontrun.case2:main"
ibcfrontrun-case3 = "ibcfrontrun.case3:main"
ibcfrontrun-case4 = "ibcfrontrun.case4:main"

[tool.hatch.build.targets.wheel]
packages = ["ibcfrontrun"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
