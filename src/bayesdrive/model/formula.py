import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from bayesdrive.errors import FormulaError
from bayesdrive.model.priors import POSITIVE, Prior, parse_prior

_IDENT = r"[A-Za-z_][A-Za-z0-9_.]*"
_TERM = re.compile(
    rf"^(?P<param>{_IDENT})\s*(\[\s*(?P<index>{_IDENT})\s*\])?"
    rf"(\s*\*\s*(?P<column>{_IDENT})(\s*\^\s*(?P<power>\d+))?)?$"
)
_NAME = re.compile(rf"^{_IDENT}$")

PriorLike = Union[Prior, str]


@dataclass(frozen=True)
class Term:
    param: str
    column: Optional[str] = None
    power: int = 1
    index: Optional[str] = None

    @property
    def is_intercept(self) -> bool:
        return self.column is None

    def __str__(self) -> str:
        text = self.param if self.index is None else f"{self.param}[{self.index}]"
        if self.column is not None:
            text += f"*{self.column}"
            if self.power != 1:
                text += f"^{self.power}"
        return text


@dataclass
class ModelSpec:
    outcome: str
    terms: List[Term]
    priors: Dict[str, Prior]
    sigma: str = "sigma"
    name: str = ""

    @property
    def formula(self) -> str:
        rhs = " + ".join(str(t) for t in self.terms) if self.terms else "0"
        return f"{self.outcome} ~ {rhs}"

    def parameters(self) -> List[str]:
        return [t.param for t in self.terms] + [self.sigma]

    def index_columns(self) -> List[str]:
        seen = []
        for t in self.terms:
            if t.index is not None and t.index not in seen:
                seen.append(t.index)
        return seen

    def columns(self) -> List[str]:
        cols = [self.outcome]
        for t in self.terms:
            for c in (t.column, t.index):
                if c is not None and c not in cols:
                    cols.append(c)
        return cols

    def predictors(self) -> List[str]:
        return [c for c in self.columns() if c != self.outcome and c not in self.index_columns()]

    def layout(self, levels: Mapping[str, Sequence[str]]) -> List[Tuple[str, str, Optional[int]]]:
        flat = []
        for t in self.terms:
            if t.index is None:
                flat.append((t.param, t.param, None))
                continue
            if t.index not in levels:
                raise FormulaError(f"No levels known for index column {t.index!r}")
            for i in range(len(levels[t.index])):
                flat.append((f"{t.param}[{i}]", t.param, i))
        flat.append((self.sigma, self.sigma, None))
        return flat

    def describe(self) -> str:
        mu = " + ".join(str(t) for t in self.terms) if self.terms else "0"
        lines = [f"{self.outcome} ~ normal(mu, {self.sigma})", f"mu <- {mu}"]
        lines += [f"{p} ~ {self.priors[p]}" for p in self.parameters()]
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "formula": self.formula,
            "priors": {p: str(self.priors[p]) for p in self.parameters()},
            "sigma": self.sigma,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, payload: Mapping) -> "ModelSpec":
        return parse_formula(
            payload["formula"], payload["priors"], sigma=payload.get("sigma", "sigma"), name=payload.get("name", "")
        )


def _parse_term(text: str) -> Term:
    match = _TERM.match(text.strip())
    if not match:
        raise FormulaError(f"Cannot parse term {text.strip()!r}; expected a, a[idx], b*x or b*x^k")
    power = int(match.group("power") or 1)
    if power < 1:
        raise FormulaError(f"Power must be a positive integer in {text.strip()!r}")
    return Term(
        param=match.group("param"),
        column=match.group("column"),
        power=power,
        index=match.group("index"),
    )


def parse_priors(text: str) -> Dict[str, Prior]:
    """Parse ``"a=normal(0,1); b=normal(0,0.5)"`` (``;`` or newline separated)."""
    priors = {}
    for item in re.split(r"[;\n]", text):
        if not item.strip():
            continue
        if "=" not in item:
            raise FormulaError(f"Prior {item.strip()!r} must look like name=dist(args)")
        name, dist = item.split("=", 1)
        name = name.strip()
        if not _NAME.match(name):
            raise FormulaError(f"Bad parameter name {name!r}")
        if name in priors:
            raise FormulaError(f"Prior for {name!r} given twice")
        priors[name] = parse_prior(dist)
    return priors


def parse_formula(
    text: str,
    priors: Union[Mapping[str, PriorLike], str],
    sigma: str = "sigma",
    name: str = "",
) -> ModelSpec:
    if text.count("~") != 1:
        raise FormulaError(f"Formula needs exactly one '~': {text!r}")
    lhs, rhs = (s.strip() for s in text.split("~"))
    if not lhs or not rhs:
        raise FormulaError(f"Formula has an empty side: {text!r}")
    if not _NAME.match(lhs):
        raise FormulaError(f"Outcome must be a single column name, got {lhs!r}")
    if "-" in rhs:
        raise FormulaError("Subtraction is not supported; put the sign in the prior instead")

    terms = [] if rhs == "0" else [_parse_term(t) for t in rhs.split("+")]
    intercepts = [t for t in terms if t.is_intercept]
    if len(intercepts) > 1:
        raise FormulaError(f"More than one intercept term: {[str(t) for t in intercepts]}")

    params = [t.param for t in terms] + [sigma]
    duplicated = sorted({p for p in params if params.count(p) > 1})
    if duplicated:
        raise FormulaError(f"Parameter names used more than once: {duplicated}")
    columns = {c for t in terms for c in (t.column, t.index) if c} | {lhs}
    clashes = sorted(set(params) & columns)
    if clashes:
        raise FormulaError(f"Names used both as parameter and column: {clashes}")

    if isinstance(priors, str):
        priors = parse_priors(priors)
    resolved = {k: parse_prior(v) if isinstance(v, str) else v for k, v in priors.items()}
    missing = [p for p in params if p not in resolved]
    if missing:
        raise FormulaError(f"No prior given for: {missing}")
    unused = sorted(set(resolved) - set(params))
    if unused:
        raise FormulaError(f"Priors given for parameters not in the model: {unused}")
    if resolved[sigma].support != POSITIVE:
        raise FormulaError(f"Prior for {sigma} must be on positive values, got {resolved[sigma]}")

    return ModelSpec(outcome=lhs, terms=terms, priors=resolved, sigma=sigma, name=name)
