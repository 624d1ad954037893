"""Configuration management for the digital twin."""

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .models import (
    BOMEdge,
    FAIRecord,
    FAIStatus,
    InventoryItem,
    Machine,
    MachineStatus,
    Operator,
    OperatorRole,
    Tool,
    ToolStatus,
    WorkOrder,
    WorkOrderStatus,
)


@dataclass
class MQTTConfig:
    """MQTT broker configuration."""

    broker: str = "localhost"
    port: int = 1883
    username: str = ""
    password: str = ""
    client_id: str = "shopfloor-twin"
    qos: int = 1


@dataclass
class UNSConfig:
    """Topic namespace for the live machine stream."""

    enterprise: str = "bakirdef"
    site: str = "plant_ankara"
    topic_prefix: str = "umh/v1"


@dataclass
class SimulationConfig:
    """Scheduler parameters."""

    tick_interval_ms: int = 5000
    random_seed: int = 42
    candidate_source: str = "fai"  # "fai" (simulation) or "work_order"
    simulated_operator_level: int = 3


@dataclass
class TransitionRules:
    """Per-tick state machine thresholds and probabilities."""

    maintenance_health_threshold: float = 20.0
    fault_probability: float = 0.005
    cycle_complete_probability: float = 0.01
    wear_probability: float = 0.3
    wear_range: Tuple[float, float] = (0.5, 1.5)
    oee_step: float = 1.0
    oee_bounds: Tuple[float, float] = (50.0, 100.0)
    auto_start_probability: float = 0.05


@dataclass
class PredictorConfig:
    max_rul_hours: float = 1000.0
    low_oee_threshold: float = 70.0
    low_oee_penalty: float = 0.8


@dataclass
class InterlockConfig:
    tool_life_floor_pct: float = 5.0
    default_min_competency: int = 3  # when no machine is targeted


@dataclass
class PlantConfig:
    """Seed rows loaded into the store at startup."""

    machines: List[Machine] = field(default_factory=list)
    tools: List[Tool] = field(default_factory=list)
    operators: List[Operator] = field(default_factory=list)
    inventory: List[InventoryItem] = field(default_factory=list)
    bom: List[BOMEdge] = field(default_factory=list)
    work_orders: List[WorkOrder] = field(default_factory=list)
    fai_records: List[FAIRecord] = field(default_factory=list)


@dataclass
class Config:
    """Main configuration container."""

    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    uns: UNSConfig = field(default_factory=UNSConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    rules: TransitionRules = field(default_factory=TransitionRules)
    predictor: PredictorConfig = field(default_factory=PredictorConfig)
    interlock: InterlockConfig = field(default_factory=InterlockConfig)
    plant: PlantConfig = field(default_factory=PlantConfig)

    @classmethod
    def from_yaml(cls, config_path: Path) -> "Config":
        """Load configuration from YAML file."""
        if not config_path.exists():
            return cls.default()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def from_env(cls, config: Optional["Config"] = None) -> "Config":
        """Apply environment variable overrides."""
        config = config or cls.default()

        config.mqtt.broker = os.getenv("MQTT_BROKER", config.mqtt.broker)
        config.mqtt.port = int(os.getenv("MQTT_PORT", config.mqtt.port))
        config.mqtt.username = os.getenv("MQTT_USERNAME", config.mqtt.username)
        config.mqtt.password = os.getenv("MQTT_PASSWORD", config.mqtt.password)

        config.uns.enterprise = os.getenv("UNS_ENTERPRISE", config.uns.enterprise)
        config.uns.site = os.getenv("UNS_SITE", config.uns.site)

        seed = os.getenv("TWIN_SEED")
        if seed:
            config.simulation.random_seed = int(seed)
        interval = os.getenv("TWIN_TICK_INTERVAL_MS")
        if interval:
            config.simulation.tick_interval_ms = int(interval)

        return config

    @classmethod
    def default(cls) -> "Config":
        """Create default configuration with the reference plant."""
        config = cls()
        config.plant = default_plant()
        return config

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        config = cls.default()

        if "mqtt" in data:
            mqtt_data = data["mqtt"]
            config.mqtt = MQTTConfig(
                broker=mqtt_data.get("broker", config.mqtt.broker),
                port=mqtt_data.get("port", config.mqtt.port),
                username=mqtt_data.get("username", config.mqtt.username),
                password=mqtt_data.get("password", config.mqtt.password),
                client_id=mqtt_data.get("client_id", config.mqtt.client_id),
                qos=mqtt_data.get("qos", config.mqtt.qos),
            )

        if "uns" in data:
            uns_data = data["uns"]
            config.uns = UNSConfig(
                enterprise=uns_data.get("enterprise", config.uns.enterprise),
                site=uns_data.get("site", config.uns.site),
                topic_prefix=uns_data.get("topic_prefix", config.uns.topic_prefix),
            )

        if "simulation" in data:
            sim_data = data["simulation"]
            config.simulation = SimulationConfig(
                tick_interval_ms=sim_data.get(
                    "tick_interval_ms", config.simulation.tick_interval_ms
                ),
                random_seed=sim_data.get("random_seed", config.simulation.random_seed),
                candidate_source=sim_data.get(
                    "candidate_source", config.simulation.candidate_source
                ),
                simulated_operator_level=sim_data.get(
                    "simulated_operator_level", config.simulation.simulated_operator_level
                ),
            )

        if "rules" in data:
            rules_data = data["rules"]
            defaults = TransitionRules()
            config.rules = TransitionRules(
                maintenance_health_threshold=rules_data.get(
                    "maintenance_health_threshold", defaults.maintenance_health_threshold
                ),
                fault_probability=rules_data.get("fault_probability", defaults.fault_probability),
                cycle_complete_probability=rules_data.get(
                    "cycle_complete_probability", defaults.cycle_complete_probability
                ),
                wear_probability=rules_data.get("wear_probability", defaults.wear_probability),
                wear_range=tuple(rules_data.get("wear_range", defaults.wear_range)),
                oee_step=rules_data.get("oee_step", defaults.oee_step),
                oee_bounds=tuple(rules_data.get("oee_bounds", defaults.oee_bounds)),
                auto_start_probability=rules_data.get(
                    "auto_start_probability", defaults.auto_start_probability
                ),
            )

        if "predictor" in data:
            pred_data = data["predictor"]
            config.predictor = PredictorConfig(
                max_rul_hours=pred_data.get("max_rul_hours", config.predictor.max_rul_hours),
                low_oee_threshold=pred_data.get(
                    "low_oee_threshold", config.predictor.low_oee_threshold
                ),
                low_oee_penalty=pred_data.get("low_oee_penalty", config.predictor.low_oee_penalty),
            )

        if "interlock" in data:
            il_data = data["interlock"]
            config.interlock = InterlockConfig(
                tool_life_floor_pct=il_data.get(
                    "tool_life_floor_pct", config.interlock.tool_life_floor_pct
                ),
                default_min_competency=il_data.get(
                    "default_min_competency", config.interlock.default_min_competency
                ),
            )

        if "plant" in data:
            config.plant = _plant_from_dict(data["plant"])

        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        data = {
            "mqtt": {
                "broker": self.mqtt.broker,
                "port": self.mqtt.port,
                "username": self.mqtt.username,
                "password": self.mqtt.password,
                "client_id": self.mqtt.client_id,
                "qos": self.mqtt.qos,
            },
            "uns": {
                "enterprise": self.uns.enterprise,
                "site": self.uns.site,
                "topic_prefix": self.uns.topic_prefix,
            },
            "simulation": {
                "tick_interval_ms": self.simulation.tick_interval_ms,
                "random_seed": self.simulation.random_seed,
                "candidate_source": self.simulation.candidate_source,
                "simulated_operator_level": self.simulation.simulated_operator_level,
            },
            "rules": {
                "maintenance_health_threshold": self.rules.maintenance_health_threshold,
                "fault_probability": self.rules.fault_probability,
                "cycle_complete_probability": self.rules.cycle_complete_probability,
                "wear_probability": self.rules.wear_probability,
                "wear_range": list(self.rules.wear_range),
                "oee_step": self.rules.oee_step,
                "oee_bounds": list(self.rules.oee_bounds),
                "auto_start_probability": self.rules.auto_start_probability,
            },
            "predictor": {
                "max_rul_hours": self.predictor.max_rul_hours,
                "low_oee_threshold": self.predictor.low_oee_threshold,
                "low_oee_penalty": self.predictor.low_oee_penalty,
            },
            "interlock": {
                "tool_life_floor_pct": self.interlock.tool_life_floor_pct,
                "default_min_competency": self.interlock.default_min_competency,
            },
            "plant": _plant_to_dict(self.plant),
        }

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# =============================================================================
# Plant seed data
# =============================================================================


def default_plant() -> PlantConfig:
    """Reference plant: six machines, four tools, two FAI-gated parts."""
    plant = PlantConfig()

    plant.tools = [
        Tool(id=tool_id, name=tool_id, life_remaining=95.0, status=ToolStatus.READY)
        for tool_id in ("Drill-001", "Mill-002", "Lathe-Tool-A", "Probe-X")
    ]

    machine_defs = [
        ("CNC-001", "CNC Milling Center", 3, "Drill-001"),
        ("CNC-002", "5-Axis CNC", 5, None),
        ("CNC-003", "Lathe Station", 2, None),
        ("FURNACE-001", "Heat Treat Furnace", 4, None),
        ("FURNACE-002", "Vacuum Furnace", 4, None),
        ("CMM-001", "CMM Inspection", 2, None),
    ]
    plant.machines = [
        Machine(
            id=machine_id,
            name=name,
            status=MachineStatus.IDLE,
            health_score=100.0,
            oee=0.0,
            min_competency_level=min_skill,
            connected_tool_id=tool_id,
        )
        for machine_id, name, min_skill, tool_id in machine_defs
    ]

    plant.inventory = [
        InventoryItem("RAW-AL-7075-T6", 500, "Aluminum 7075 Plate 10mm"),
        InventoryItem("RAW-TI-6AL4V", 200, "Titanium Round Bar 50mm"),
        InventoryItem("SENSOR-AS-99", 15, "Adv. Optical Sensor (Consignment)", is_gfe=True, owner="ASELSAN"),
        InventoryItem("FAST-LOCK-01", 5000, "Locking Nut M10 (Gov. Issue)", is_gfe=True, owner="SSB"),
        InventoryItem("SUB-PCBA-01", 50, "Control Board V2"),
    ]

    plant.bom = [
        BOMEdge("PN-TANK-ARMOR-01", "RAW-TI-6AL4V", 2),
        BOMEdge("PN-TANK-ARMOR-01", "FAST-LOCK-01", 12),
        BOMEdge("PN-UAV-LENS-MT", "RAW-AL-7075-T6", 1),
        BOMEdge("PN-UAV-LENS-MT", "SENSOR-AS-99", 1),
    ]

    # Operator 5 is a novice, operator 6 an expert
    plant.operators = [Operator("USER-ADMIN", "admin", OperatorRole.ADMIN, 5)]
    for i in range(1, 11):
        if i == 1:
            role = OperatorRole.MANAGER
        elif i <= 4:
            role = OperatorRole.QUALITY
        else:
            role = OperatorRole.OPERATOR
        competency = 1 if i == 5 else (5 if i == 6 else 3)
        plant.operators.append(Operator(f"USER-{i}", f"user{i}", role, competency))

    plant.work_orders = [
        WorkOrder("WO-2025-001", "PN-TANK-ARMOR-01", 10, WorkOrderStatus.PENDING, "High"),
        WorkOrder("WO-2025-002", "PN-UAV-LENS-MT", 5, WorkOrderStatus.PENDING, "Normal"),
        WorkOrder("WO-2025-003", "PN-GENERIC-Bracket", 50, WorkOrderStatus.IN_PROGRESS, "Low"),
    ]

    plant.fai_records = [
        FAIRecord("FAI-001", "PN-TANK-ARMOR-01", "A", "Main Armor Plate",
                  FAIStatus.APPROVED, production_locked=False, inspector="Quality Lead"),
        FAIRecord("FAI-002", "PN-UAV-LENS-MT", "B", "Lens Mount Assy",
                  FAIStatus.REJECTED, production_locked=True, inspector="Quality Lead"),
    ]

    return plant


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _plant_from_dict(data: Dict[str, Any]) -> PlantConfig:
    plant = PlantConfig()

    for m in data.get("machines", []):
        plant.machines.append(
            Machine(
                id=m["id"],
                name=m.get("name", m["id"]),
                status=MachineStatus(m.get("status", "Idle")),
                health_score=float(m.get("health_score", 100.0)),
                oee=float(m.get("oee", 0.0)),
                min_competency_level=int(m.get("min_competency_level", 1)),
                connected_tool_id=m.get("connected_tool_id"),
                predicted_rul=float(m.get("predicted_rul", 0.0)),
                failure_probability=float(m.get("failure_probability", 0.0)),
            )
        )

    for t in data.get("tools", []):
        plant.tools.append(
            Tool(
                id=t["id"],
                name=t.get("name", t["id"]),
                life_remaining=float(t.get("life_remaining", 100.0)),
                status=ToolStatus(t.get("status", "Ready")),
            )
        )

    for o in data.get("operators", []):
        plant.operators.append(
            Operator(
                id=o["id"],
                username=o.get("username", o["id"]),
                role=OperatorRole(o.get("role", "operator")),
                competency_level=int(o.get("competency_level", 1)),
            )
        )

    for i in data.get("inventory", []):
        plant.inventory.append(
            InventoryItem(
                part_number=i["part_number"],
                quantity=int(i.get("quantity", 0)),
                description=i.get("description", ""),
                location=i.get("location", ""),
                is_gfe=bool(i.get("is_gfe", False)),
                owner=i.get("owner"),
            )
        )

    for b in data.get("bom", []):
        plant.bom.append(
            BOMEdge(b["parent_part_number"], b["child_part_number"], int(b.get("quantity_required", 1)))
        )

    for w in data.get("work_orders", []):
        plant.work_orders.append(
            WorkOrder(
                id=w["id"],
                part_number=w["part_number"],
                quantity=int(w["quantity"]),
                status=WorkOrderStatus(w.get("status", "Pending")),
                priority=w.get("priority", "Normal"),
                start_time=_parse_time(w.get("start_time")),
                end_time=_parse_time(w.get("end_time")),
            )
        )

    for f in data.get("fai_records", []):
        plant.fai_records.append(
            FAIRecord(
                id=f["id"],
                part_number=f["part_number"],
                revision=str(f.get("revision", "A")),
                description=f.get("description", ""),
                status=FAIStatus(f.get("status", "Planned")),
                production_locked=bool(f.get("production_locked", True)),
                inspector=f.get("inspector", ""),
            )
        )

    return plant


def _plant_to_dict(plant: PlantConfig) -> Dict[str, Any]:
    return {
        "machines": [
            {
                "id": m.id,
                "name": m.name,
                "status": m.status.value,
                "health_score": m.health_score,
                "oee": m.oee,
                "min_competency_level": m.min_competency_level,
                "connected_tool_id": m.connected_tool_id,
            }
            for m in plant.machines
        ],
        "tools": [
            {"id": t.id, "name": t.name, "life_remaining": t.life_remaining, "status": t.status.value}
            for t in plant.tools
        ],
        "operators": [
            {
                "id": o.id,
                "username": o.username,
                "role": o.role.value,
                "competency_level": o.competency_level,
            }
            for o in plant.operators
        ],
        "inventory": [
            {
                "part_number": i.part_number,
                "quantity": i.quantity,
                "description": i.description,
                "location": i.location,
                "is_gfe": i.is_gfe,
                "owner": i.owner,
            }
            for i in plant.inventory
        ],
        "bom": [
            {
                "parent_part_number": b.parent_part_number,
                "child_part_number": b.child_part_number,
                "quantity_required": b.quantity_required,
            }
            for b in plant.bom
        ],
        "work_orders": [
            {
                "id": w.id,
                "part_number": w.part_number,
                "quantity": w.quantity,
                "status": w.status.value,
                "priority": w.priority,
            }
            for w in plant.work_orders
        ],
        "fai_records": [
            {
                "id": f.id,
                "part_number": f.part_number,
                "revision": f.revision,
                "description": f.description,
                "status": f.status.value,
                "production_locked": f.production_locked,
                "inspector": f.inspector,
            }
            for f in plant.fai_records
        ],
    }
