[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vmx"
version = "0.1.0"
description = "A small segmented virtual machine that runs VMX25 programs, disassembles them and saves VMI25 images"
requires-python = ">=3.10"
dependencies = []
keywords = ["virtual machine", "emulator", "bytecode", "disassembler", "vmx"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: Software Development :: Disassemblers",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
vmx = "vmx.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["vmx"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
