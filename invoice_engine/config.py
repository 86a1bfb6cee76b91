import os
import yaml
import logging
from pathlib import Path
from typing import Any, Optional
from pydantic import BaseModel, Field, ValidationError

from invoice_engine.modules.config_models import EngineRules
from invoice_engine.modules.errors import PersistenceError

class InvoiceConfig(BaseModel):
    root_dir: Path

    # Fields derived from root_dir, calculated during initialization
    data_dir: Path = Field(default=None)
    config_dir: Path = Field(default=None)
    output_dir: Path = Field(default=None)
    profiles_dir: Path = Field(default=None)
    logs_dir: Path = Field(default=None)
    ledger_path: Path = Field(default=None)
    expenses_path: Path = Field(default=None)
    rates_cache_path: Path = Field(default=None)
    business_path: Path = Field(default=None)
    engine_rules_path: Path = Field(default=None)

    _engine_rules: Optional[EngineRules] = None

    class Config:
        arbitrary_types_allowed = True

    def model_post_init(self, __context: Any) -> None:
        """Initialize dependent paths after root_dir is set."""
        if not self.data_dir: self.data_dir = self.root_dir / "data"
        if not self.config_dir: self.config_dir = self.root_dir / "config"
        if not self.output_dir: self.output_dir = self.root_dir / "output"
        if not self.profiles_dir: self.profiles_dir = self.data_dir / "profiles"
        if not self.logs_dir: self.logs_dir = self.root_dir / "logs"
        if not self.ledger_path: self.ledger_path = self.data_dir / "invoice_ledger.yaml"
        if not self.expenses_path: self.expenses_path = self.data_dir / "expenses.yaml"
        if not self.rates_cache_path: self.rates_cache_path = self.data_dir / "cached_rates.json"
        if not self.business_path: self.business_path = self.profiles_dir / "business.yaml"
        if not self.engine_rules_path: self.engine_rules_path = self.config_dir / "engine.yaml"

    @property
    def engine_rules(self) -> EngineRules:
        if self._engine_rules is None:
            if not self.engine_rules_path.exists():
                self._engine_rules = EngineRules()
            else:
                try:
                    with open(self.engine_rules_path, 'r') as f:
                        raw = yaml.safe_load(f)
                    self._engine_rules = EngineRules(**(raw or {}))
                except (IOError, OSError, yaml.YAMLError, ValidationError) as e:
                    raise PersistenceError(self.engine_rules_path, str(e)) from e
        return self._engine_rules

    @classmethod
    def load_default(cls) -> 'InvoiceConfig':
        app_dir = Path(__file__).parent
        root_dir = Path(os.environ.get("INVOICE_ENGINE_ROOT", app_dir.parent))
        return cls(root_dir=root_dir)

def setup_logging(config: InvoiceConfig, level=logging.INFO):
    os.makedirs(config.logs_dir, exist_ok=True)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.logs_dir / 'invoice_generation.log'),
            logging.StreamHandler()
        ]
    )
