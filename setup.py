# Copyright 2024 The HuggingFace Team. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Simple check list from AllenNLP repo: https://github.com/allenai/allennlp/blob/main/setup.py

To create the package for PyPI.

1. Change the version in __init__.py and setup.py.

2. Build both the sources and the wheel. Do not change anything in setup.py between
   creating the wheel and the source distribution (obviously).

   For the wheel, run: "python setup.py bdist_wheel" in the top level directory
   (This will build a wheel for the Python version you use to build it).

   For the sources, run: "python setup.py sdist"
   You should now have a /dist directory with both .whl and .tar.gz source versions.

3. Check that everything looks correct by uploading the package to the PyPI test server:

   twine upload dist/* -r pypitest

   Check that you can install it in a virtualenv by running:
   pip install -i https://testpypi.python.org/pypi diffusion-sampler

   Check you can run the following commands:
   python -c "from diffusion_sampler import __version__; print(__version__)"
   python -c "from diffusion_sampler import *"

4. Upload the final version to the actual PyPI:
   twine upload dist/* -r pypi
"""

import re
import sys

from setuptools import find_packages, setup


_deps = [
    "Pillow",  # keep the PIL.Image.Resampling deprecation away
    "huggingface-hub>=0.23.2",
    "numpy",
    "parameterized",
    "pytest",
    "pytest-timeout",
    "python>=3.8.0",
    "ruff==0.1.5",
    "torch>=1.13",
    "tqdm",
]

# this is a lookup table with items like:
#
# tokenizers: "huggingface-hub==0.8.0"
# packaging: "packaging"
#
# some of the values are versioned whereas others aren't.
deps = {b: a for a, b in (re.findall(r"^(([^!=<>~]+)(?:[!=<>~].*)?$)", x)[0] for x in _deps)}


def deps_list(*pkgs):
    return [deps[pkg] for pkg in pkgs]


extras = {}
extras["quality"] = deps_list("ruff")
extras["test"] = deps_list("parameterized", "pytest", "pytest-timeout")
extras["dev"] = extras["quality"] + extras["test"]

install_requires = [
    deps["huggingface-hub"],
    deps["numpy"],
    deps["Pillow"],
    deps["torch"],
    deps["tqdm"],
]

version_range_max = max(sys.version_info[1], 10) + 1

setup(
    name="diffusion-sampler",
    version="0.1.0.dev0",  # expected format is one of x.y.z.dev0, or x.y.z.rc1 or x.y.z (no to dashes, yes to dots)
    description="Seeded latent diffusion sampling: schedulers, guidance, conditioning and inpainting in PyTorch.",
    long_description=open("README.md", "r", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    keywords="deep learning diffusion pytorch stable diffusion scheduler sampling",
    license="Apache 2.0 License",
    package_dir={"": "src"},
    packages=find_packages("src"),
    include_package_data=True,
    python_requires=">=3.8.0",
    install_requires=list(install_requires),
    extras_require=extras,
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Programming Language :: Python :: 3",
    ]
    + [f"Programming Language :: Python :: 3.{i}" for i in range(8, version_range_max)],
)
