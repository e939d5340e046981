#!/usr/bin/env python3
"""Evaluate the policy classifier against labeled product scenarios.

Runs each (product, category) scenario through the live classifier and
scores the boolean verdict against the label. A final check summarizes a
store with no recorded violations, which must come back clean.

Usage:
    python -m eval.policy_eval --labels eval/scenarios.jsonl
    python -m eval.policy_eval --labels eval/scenarios.jsonl --model "openai:qwen2.5-7b@http://localhost:1234/v1"
"""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from agents.classifier import classify
from agents.llm import LanguageModel, build_model
from agents.summarizer import summarize
from config import Config
from errors import GenerationFailure
from models.product import Product
from policies import POLICY_CATALOG


@dataclass
class Scenario:
    """One labeled (product, category) scenario."""

    scenario_id: str
    category: str
    product: Product
    label: bool


def _read_records(path: Path) -> list[dict]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def _build_scenarios(records: Iterable[dict]) -> list[Scenario]:
    examples: list[Scenario] = []
    for record in records:
        category = record.get("category")
        if category not in POLICY_CATALOG or not isinstance(record.get("label"), bool):
            continue
        examples.append(
            Scenario(
                scenario_id=str(record.get("id") or record.get("permalink")),
                category=category,
                product=Product(
                    name=record.get("name", ""),
                    permalink=record.get("permalink", ""),
                    description=record.get("description", ""),
                    short_description=record.get("short_description", ""),
                ),
                label=record["label"],
            )
        )
    return examples


async def _run_predictions(
    examples: list[Scenario],
    model: LanguageModel,
    concurrency: int,
) -> list[dict]:
    semaphore = asyncio.Semaphore(concurrency)

    async def classify_one(example: Scenario) -> dict:
        async with semaphore:
            try:
                verdict = await classify(POLICY_CATALOG[example.category], example.product, model)
            except GenerationFailure as e:
                return {"id": example.scenario_id, "category": example.category, "error": str(e)}
        return {
            "id": example.scenario_id,
            "category": example.category,
            "violates": verdict.violates,
            "confidence": round(verdict.confidence, 4),
            "reason": verdict.reason,
        }

    return list(await asyncio.gather(*(classify_one(example) for example in examples)))


def _evaluate(predictions: Iterable[dict], labels: dict[str, Scenario]) -> dict:
    tp = fp = tn = fn = errors = 0
    misses: list[str] = []

    for pred in predictions:
        example = labels.get(pred.get("id", ""))
        if example is None:
            continue
        if "error" in pred:
            errors += 1
            continue
        predicted = bool(pred.get("violates"))
        if predicted and example.label:
            tp += 1
        elif predicted and not example.label:
            fp += 1
            misses.append(example.scenario_id)
        elif not predicted and not example.label:
            tn += 1
        else:
            fn += 1
            misses.append(example.scenario_id)

    total = tp + fp + tn + fn
    precision = tp / (tp + fp) if tp + fp else 0.0
    recall = tp / (tp + fn) if tp + fn else 0.0
    return {
        "total": total,
        "errors": errors,
        "accuracy": round((tp + tn) / total, 4) if total else 0.0,
        "precision": round(precision, 4),
        "recall": round(recall, 4),
        "tp": tp,
        "fp": fp,
        "tn": tn,
        "fn": fn,
        "misses": misses,
    }


async def _clean_site_check(model: LanguageModel) -> dict:
    summary = await summarize("https://clean-store.example", model, [])
    return {"violation": summary.violation, "summary": summary.summary, "passed": not summary.violation}


def main() -> int:
    parser = argparse.ArgumentParser(description="Evaluate policy classifier accuracy.")
    parser.add_argument("--labels", default="eval/scenarios.jsonl", help="Labeled JSONL file.")
    parser.add_argument("--out-predictions", help="Write predictions JSONL.")
    parser.add_argument("--concurrency", type=int, default=4, help="Concurrent requests.")
    parser.add_argument("--model", help="Override classifier model.")
    parser.add_argument("--skip-summary", action="store_true", help="Skip the clean-site summary check.")
    args = parser.parse_args()

    examples = _build_scenarios(_read_records(Path(args.labels)))
    if not examples:
        raise SystemExit("No labeled examples found.")

    config = Config.load()
    if args.model:
        config.classifier_model = args.model
    if error := config.validate():
        raise SystemExit(f"Configuration error: {error}")

    classifier_model = build_model(config.classifier_model, config.openai_api_key, config.request_timeout)
    predictions = asyncio.run(_run_predictions(examples, classifier_model, args.concurrency))

    if args.out_predictions:
        path = Path(args.out_predictions)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(json.dumps(p, ensure_ascii=False) + "\n" for p in predictions), encoding="utf-8")

    metrics = _evaluate(predictions, {example.scenario_id: example for example in examples})
    if not args.skip_summary:
        summary_model = build_model(config.summary_model, config.openai_api_key, config.request_timeout)
        metrics["clean_site"] = asyncio.run(_clean_site_check(summary_model))

    print(json.dumps(metrics, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
