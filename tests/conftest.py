"""Shared fixtures: a small JavaScript project on disk."""

from pathlib import Path

import pytest

from cartograph.config import CartographConfig
from cartograph.indexer import MethodIndexer


ORB_JS = """\
import { Entity } from './Entity.js';

/**
 * Orb lifecycle.
 * @role core
 */
export class Orb extends Entity {
  constructor(seed) {
    super();
    this.seed = seed;
  }

  /**
   * Create a new orb instance from a seed.
   * @role helper
   * @consumer Galaxy, Nebula
   * @effect creates: Orb
   * @context requires: seed
   */
  static nova(seed) {
    const orb = new Orb(seed);
    return orb;
  }

  spin(speed) {
    this.speed = speed;
    return this;
  }

  #tick() {
    this.ticks += 1;
  }

  initOrbit = (radius) => {
    this.radius = radius;
  };
}
"""

GALAXY_JS = """\
import { Orb } from './Orb.js';

export class Galaxy {
  /**
   * Populate the galaxy with orbs.
   * @role entry
   * @effect creates: Orb
   */
  populate(count) {
    for (let i = 0; i < count; i++) {
      this.orbs.push(Orb.nova(i));
    }
  }

  getOrbs() {
    return this.orbs;
  }
}

export function formatDate(date) {
  return date.toISOString();
}

function _privateHelper() {
  return 1;
}
"""


def write_file(root: Path, rel_path: str, content: str) -> Path:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def create_project(root: Path, files: dict = None) -> Path:
    files = files if files is not None else {
        "src/Orb.js": ORB_JS,
        "src/Galaxy.js": GALAXY_JS,
    }
    for rel_path, content in files.items():
        write_file(root, rel_path, content)
    return root


@pytest.fixture
def project(tmp_path) -> Path:
    return create_project(tmp_path / "project")


@pytest.fixture
def config(project) -> CartographConfig:
    return CartographConfig(project_root=project)


@pytest.fixture
def indexer(config) -> MethodIndexer:
    indexer = MethodIndexer(config)
    indexer.index_all()
    return indexer
