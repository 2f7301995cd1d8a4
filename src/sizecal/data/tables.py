# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Tabular adapters between pandas DataFrames and calibration records.

Conversions only; reading and writing files is left to the caller.

Tables:
    species: one row per species, columns named after SpeciesParams fields
    gear: one row per species x gear, columns named after GearParams fields
    catch: one row per species x length bin (species, length, dl, count[, gear])
    ecopath: Ecopath basic estimates (group, biomass, Q/B, P/Q or P/B)
    kernel fits: stomach-content power-law kernel parameters per species
    diet: predator x prey proportions, wide or long
"""

import logging
from dataclasses import fields
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from sizecal.core.exceptions import StructuralInputError, require, require_not_none, sizecal_error_handler
from sizecal.models.sizespectrum.parameters import GearParams, ObservedCatch, SpeciesParams

logger = logging.getLogger(__name__)

SPECIES_FIELDS = tuple(f.name for f in fields(SpeciesParams))
GEAR_FIELDS = tuple(f.name for f in fields(GearParams))
KERNEL_FIELDS = ('kernel_exp', 'kernel_l_l', 'kernel_u_l', 'kernel_l_r', 'kernel_u_r')

_STRING_FIELDS = {'species', 'gear', 'sel_func'}

# Ecopath export headers and their short names
_ECOPATH_ALIASES = {
    'Group name': 'group',
    'group_name': 'group',
    'species': 'group',
    'Biomass (t/km²)': 'biomass',
    'Biomass': 'biomass',
    'Consumption / biomass (/year)': 'q_b',
    'consumption_biomass': 'q_b',
    'Production / consumption (/year)': 'p_q',
    'production_consumption': 'p_q',
    'Production / biomass (/year)': 'p_b',
    'production_biomass': 'p_b',
}

_KERNEL_ALIASES = {
    'exp': 'kernel_exp',
    'l_l': 'kernel_l_l',
    'u_l': 'kernel_u_l',
    'l_r': 'kernel_l_r',
    'u_r': 'kernel_u_r',
}


# =============================================================================
# HELPERS
# =============================================================================

def _require_columns(df: pd.DataFrame, columns: Sequence[str], table: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    require(not missing, f"{table} table is missing columns {missing}", StructuralInputError)


def _is_blank(value: Any) -> bool:
    return value is None or (not isinstance(value, str) and pd.isna(value))


def _species_name(row: Dict, table: str) -> str:
    name = row.get('species')
    name = require_not_none(None if _is_blank(name) else name, f"species name in {table} table", StructuralInputError)
    return str(name)


def _row_kwargs(row: Dict, names: Iterable[str], species: Optional[str] = None, finite: bool = False) -> Dict:
    """Typed keyword arguments from a table row; blank cells are left out.

    With ``finite`` set, infinite numeric values raise StructuralInputError.
    """
    kwargs = {}
    for name in names:
        if name not in row:
            continue
        value = row[name]
        if _is_blank(value):
            continue
        if name in _STRING_FIELDS:
            kwargs[name] = str(value)
            continue
        value = float(value)
        if finite and not np.isfinite(value):
            raise StructuralInputError(f"{name} is not finite", species=species, value=value)
        kwargs[name] = value
    return kwargs


def _blank_fields(row: Dict, names: Iterable[str]) -> List[str]:
    return [name for name in names if name in row and _is_blank(row[name])]


def _record_failure(
    errors: Optional[Dict[str, StructuralInputError]],
    species: str,
    error: StructuralInputError,
) -> None:
    """Raise ``error``, or keep it as the species' failure when collecting errors."""
    if errors is None:
        raise error
    if species not in errors:
        logger.warning(f"Species '{species}' excluded from calibration: {error}")
        errors[species] = error


def _update_species_columns(species_df: pd.DataFrame, values: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    """Overwrite ``columns`` of species_df where ``values`` (indexed by species) has a value."""
    _require_columns(species_df, ['species'], 'species')
    unknown = set(values.index).difference(species_df['species'])
    if unknown:
        logger.warning(f"Values for unknown species ignored: {sorted(map(str, unknown))}")

    out = species_df.copy()
    for column in columns:
        if column not in values.columns:
            continue
        mapped = out['species'].map(values[column])
        out[column] = mapped.combine_first(out[column]) if column in out.columns else mapped
    return out


# =============================================================================
# SPECIES AND GEAR
# =============================================================================

def species_params_from_frame(
    df: pd.DataFrame,
    errors: Optional[Dict[str, StructuralInputError]] = None,
) -> List[SpeciesParams]:
    """Build SpeciesParams from a species table; blank cells take the defaults.

    Blank cells in columns the table does provide are logged at warning
    level, since they usually mean a missing measurement rather than a
    deliberate default.

    Args:
        df: Species table
        errors: When given, a bad row is recorded here under its species
            and left out instead of raising

    Raises:
        StructuralInputError: If required columns are missing, a species name
            is blank, or (without ``errors``) a row is invalid or a species
            appears twice
    """
    _require_columns(df, ['species', 'w_max', 'w_mat'], 'species')

    ignored = sorted(set(df.columns).difference(SPECIES_FIELDS))
    if ignored:
        logger.debug(f"Species table columns not used by the model: {ignored}")

    rows = df.to_dict(orient='records')
    names = [_species_name(row, 'species') for row in rows]
    duplicated = sorted({name for name in names if names.count(name) > 1})
    for name in duplicated:
        _record_failure(errors, name, StructuralInputError(
            "species table lists species more than once", species=name, value=duplicated
        ))

    records = []
    for name, row in zip(names, rows):
        if name in duplicated:
            continue
        try:
            with sizecal_error_handler(f"reading species row '{name}'", error_type=StructuralInputError):
                kwargs = _row_kwargs(row, SPECIES_FIELDS, species=name, finite=True)
                for required in ('w_max', 'w_mat'):
                    if required not in kwargs:
                        raise StructuralInputError(f"{required} is missing", species=name)
                records.append(SpeciesParams(**kwargs))
        except StructuralInputError as e:
            _record_failure(errors, name, e)
            continue

        blank = _blank_fields(row, SPECIES_FIELDS)
        if blank:
            logger.warning(f"Species '{name}': blank {blank} filled from defaults")
    return records


def species_params_to_frame(records: Iterable[SpeciesParams]) -> pd.DataFrame:
    return pd.DataFrame([sp.to_dict() for sp in records], columns=list(SPECIES_FIELDS))


def gear_params_from_frame(
    df: pd.DataFrame,
    errors: Optional[Dict[str, StructuralInputError]] = None,
) -> List[GearParams]:
    """Build GearParams from a gear table.

    Args:
        df: Gear table
        errors: When given, a bad row is recorded here under its species
            and left out instead of raising

    Raises:
        StructuralInputError: If required columns are missing, a species name
            is blank, or (without ``errors``) a row lacks a required value
    """
    required = ('species', 'gear', 'sel_func', 'l50', 'l25')
    _require_columns(df, required, 'gear')
    gears = []
    for row in df.to_dict(orient='records'):
        name = _species_name(row, 'gear')
        try:
            with sizecal_error_handler(f"reading gear row of '{name}'", error_type=StructuralInputError):
                kwargs = _row_kwargs(row, GEAR_FIELDS, species=name)
                missing = [field_name for field_name in required if field_name not in kwargs]
                if missing:
                    raise StructuralInputError(f"gear row is missing {missing}", species=name)
                gears.append(GearParams(**kwargs))
        except StructuralInputError as e:
            _record_failure(errors, name, e)
    return gears


def gear_params_to_frame(gears: Iterable[GearParams]) -> pd.DataFrame:
    return pd.DataFrame([g.to_dict() for g in gears], columns=list(GEAR_FIELDS))


# =============================================================================
# CATCH
# =============================================================================

def observed_catch_from_frame(
    catch_df: pd.DataFrame,
    species_df: Optional[pd.DataFrame] = None,
    errors: Optional[Dict[str, StructuralInputError]] = None,
) -> Dict[str, ObservedCatch]:
    """
    Group a catch-at-length table into one ObservedCatch per species.

    Yield and production targets are taken from the ``yield_observed`` and
    ``production_observed`` columns of ``species_df`` when given. Histogram
    contents are validated when the catch objective is built, so a bad
    histogram fails only its own species.

    Args:
        catch_df: Catch-at-length table
        species_df: Optional species table holding the yield and
            production targets
        errors: When given, a species whose catch cannot be grouped is
            recorded here and left out instead of raising

    Raises:
        StructuralInputError: If columns are missing or (without ``errors``)
            one species' catch mixes several gears
    """
    _require_columns(catch_df, ['species', 'length', 'dl', 'count'], 'catch')

    targets: Dict[str, Dict[str, float]] = {}
    if species_df is not None:
        for row in species_df.to_dict(orient='records'):
            if _is_blank(row.get('species')):
                continue
            targets[str(row['species'])] = _row_kwargs(row, ('yield_observed', 'production_observed'))

    observed = {}
    for name, group in catch_df.groupby('species', sort=False):
        name = str(name)
        gear = None
        if 'gear' in group.columns:
            gear_names = group['gear'].dropna().unique()
            if len(gear_names) > 1:
                _record_failure(errors, name, StructuralInputError(
                    "catch table mixes several gears for one species", species=name, value=tuple(gear_names)
                ))
                continue
            gear = str(gear_names[0]) if len(gear_names) else None

        group = group.sort_values('length')
        species_targets = targets.get(name, {})
        observed[name] = ObservedCatch(
            species=name,
            length=group['length'].to_numpy(dtype=float),
            dl=group['dl'].to_numpy(dtype=float),
            count=group['count'].to_numpy(dtype=float),
            gear=gear,
            yield_observed=species_targets.get('yield_observed'),
            production_observed=species_targets.get('production_observed'),
        )
    return observed


# =============================================================================
# ECOPATH, KERNEL FITS AND DIET
# =============================================================================

def ecopath_targets(df: pd.DataFrame) -> pd.DataFrame:
    """
    Convert Ecopath basic estimates to calibration targets.

    Consumption is B * Q/B; production is B * P/Q * Q/B, or B * P/B when
    P/Q is not given.

    Returns:
        DataFrame with columns species, biomass_observed,
        consumption_observed, production_observed
    """
    table = df.rename(columns={k: v for k, v in _ECOPATH_ALIASES.items() if k in df.columns})
    _require_columns(table, ['group', 'biomass', 'q_b'], 'ecopath')

    biomass = table['biomass'].astype(float)
    q_b = table['q_b'].astype(float)
    consumption = biomass * q_b
    if 'p_q' in table.columns:
        production = biomass * table['p_q'].astype(float) * q_b
    elif 'p_b' in table.columns:
        production = biomass * table['p_b'].astype(float)
    else:
        production = pd.Series(np.nan, index=table.index)

    return pd.DataFrame({
        'species': table['group'].astype(str),
        'biomass_observed': biomass,
        'consumption_observed': consumption,
        'production_observed': production,
    }).reset_index(drop=True)


def apply_targets(species_df: pd.DataFrame, targets: pd.DataFrame) -> pd.DataFrame:
    """Merge observed targets (e.g. from :func:`ecopath_targets`) into a species table."""
    _require_columns(targets, ['species'], 'targets')
    columns = [c for c in targets.columns if c != 'species']
    return _update_species_columns(species_df, targets.set_index('species'), columns)


def apply_kernel_fits(species_df: pd.DataFrame, fits_df: pd.DataFrame) -> pd.DataFrame:
    """Merge stomach-content kernel fits into a species table.

    ``fits_df`` has a species column and the kernel parameters, either as
    SpeciesParams names (kernel_exp, ...) or short names (exp, l_l, ...).
    """
    fits = fits_df.rename(columns={k: v for k, v in _KERNEL_ALIASES.items() if k in fits_df.columns})
    _require_columns(fits, ['species'], 'kernel fits')
    return _update_species_columns(species_df, fits.set_index('species'), KERNEL_FIELDS)


def diet_matrix_from_frame(df: pd.DataFrame) -> Dict[str, Dict[str, float]]:
    """
    Diet proportions keyed by predator, then prey.

    Accepts long format (columns predator, prey, proportion) or wide format
    (a predator column, or the index, and one column per prey). Blank
    cells are dropped.
    """
    if {'predator', 'prey', 'proportion'}.issubset(df.columns):
        wide = df.pivot_table(index='predator', columns='prey', values='proportion', aggfunc='sum')
    elif 'predator' in df.columns:
        wide = df.set_index('predator')
    else:
        wide = df

    diets: Dict[str, Dict[str, float]] = {}
    for predator, row in wide.iterrows():
        diets[str(predator)] = {str(prey): float(v) for prey, v in row.items() if not pd.isna(v)}
    return diets
