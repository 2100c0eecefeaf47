"""
Dataset catalog.

Every pipeline is the same generic medallion flow; this module declares
what differs per dataset. Resource ids that are not known ahead of time
use a slug and can be pointed at the live resource with
``MUNICIPAL_RESOURCE_IDS='{"alojamientos.alojamientos": "<uuid>"}'``.
"""

from __future__ import annotations

from municipal_spine.core.errors import ConfigError
from municipal_spine.datasets.schema import (
    DatasetSpec,
    FactSpec,
    FieldSpec,
    ReferenceGate,
    ResourceSpec,
)
from municipal_spine.registry import DIM_MUNICIPIO

MODALIDADES = frozenset({"HOTELERA", "EXTRAHOTELERA"})
MODALIDADES_HOSTELERIA = frozenset({"RESTAURACION", "HOSTELERIA"})
LOCALIDAD_TIPOS = frozenset({"NUC", "DIS"})

BIC_CATEGORIES = frozenset({
    "ZONA ARQUEOLÓGICA",
    "CONJUNTO HISTÓRICO",
    "MONUMENTO",
    "SITIO HISTÓRICO",
    "JARDÍN HISTÓRICO",
    "ZONA PALEONTOLÓGICA",
    "SITIO ETNOLÓGICO",
})

LATITUDE = (-90.0, 90.0)
LONGITUDE = (-180.0, 180.0)

MUNICIPIO = FieldSpec("municipio_nombre", required=True, sources=("municipio_nombre", "municipio"))


def _ine_fact(table: str, silver_table: str, *dims: str, procedure: str | None = None,
              measures: dict[str, str] | None = None) -> FactSpec:
    return FactSpec(
        table=table,
        silver_table=silver_table,
        group_by=("municipality_code", *dims),
        key_columns=("ine_code", *dims),
        measures=measures or {},
        procedure=procedure,
    )


def _fecha_fin_in_year(values: dict) -> str | None:
    inicio, fin = values.get("evento_fecha_inicio"), values.get("evento_fecha_fin")
    if fin is not None and fin[:4] != (inicio or "")[:4]:
        return "out_of_period:evento_fecha_fin"
    return None


# ── Alojamientos turísticos ─────────────────────────────────────────────

ALOJAMIENTOS = DatasetSpec(
    name="alojamientos",
    pipeline_name="ckan_alojamientos_turisticos",
    dataset_id="alojamientos-turisticos",
    description="Registered tourist accommodation",
    resources=(
        ResourceSpec(
            key="alojamientos",
            resource_id="alojamientos-turisticos",
            bronze_table="bronze_alojamientos",
            silver_table="silver_alojamiento",
            fields=(
                MUNICIPIO,
                FieldSpec("modalidad", kind="upper", required=True, choices=MODALIDADES),
                FieldSpec("tipo", required=True),
                FieldSpec("nombre", required=True),
                FieldSpec("direccion"),
                FieldSpec("codigo_postal", kind="postal_code"),
                FieldSpec("categoria"),
                FieldSpec("unidades_alojativas", kind="integer"),
                FieldSpec("plazas_alojativas", kind="integer"),
            ),
            key_fields=("source_resource_id", "municipio_normalizado", "nombre"),
            postal_code_field="codigo_postal",
        ),
    ),
    facts=(
        _ine_fact(
            "fact_alojamiento_municipio",
            "silver_alojamiento",
            "modalidad",
            "tipo",
            procedure="refresh_alojamientos_facts",
            measures={
                "total_unidades_alojativas": "unidades_alojativas",
                "total_plazas_alojativas": "plazas_alojativas",
            },
        ),
    ),
)

# ── Equipamientos (espacios naturales) ──────────────────────────────────

EQUIPAMIENTOS = DatasetSpec(
    name="equipamientos",
    pipeline_name="ckan_equipamientos",
    dataset_id="72f4fb98-c54d-46db-bbe0-b02d95348d76",
    description="Facilities in natural spaces",
    resources=(
        ResourceSpec(
            key="equipamientos",
            resource_id="1426e655-2087-4db6-9e78-b5b44d3f058a",
            bronze_table="bronze_equipamientos",
            silver_table="silver_equipamiento",
            fields=(
                FieldSpec("equipamiento_nombre", required=True),
                FieldSpec("equipamiento_tipo", required=True),
                MUNICIPIO,
                FieldSpec("espacio_natural_nombre"),
                FieldSpec("puntos_interes"),
                FieldSpec("latitud", kind="numeric", range=LATITUDE),
                FieldSpec("longitud", kind="numeric", range=LONGITUDE),
            ),
            key_fields=(
                "source_resource_id",
                "equipamiento_nombre",
                "municipio_normalizado",
                "equipamiento_tipo",
            ),
        ),
    ),
    facts=(
        _ine_fact(
            "fact_equipamiento_municipio_tipo",
            "silver_equipamiento",
            "equipamiento_tipo",
            procedure="refresh_equipamientos_facts",
        ),
    ),
)

# ── Eventos deportivos ──────────────────────────────────────────────────

EVENTOS_DEPORTIVOS = DatasetSpec(
    name="eventos_deportivos",
    pipeline_name="ckan_eventos_deportivos",
    dataset_id="eventos-deportivos",
    description="Sports events of the target year",
    resources=(
        ResourceSpec(
            key="eventos",
            resource_id="eventos-deportivos",
            bronze_table="bronze_eventos_deportivos",
            silver_table="silver_evento_deportivo",
            fields=(
                FieldSpec("evento_nombre", required=True),
                MUNICIPIO,
                FieldSpec("evento_fecha_inicio", kind="date", required=True, in_target_year=True),
                FieldSpec("evento_fecha_fin", kind="date", in_target_year=True),
                FieldSpec("evento_url"),
                FieldSpec("evento_descripcion"),
                FieldSpec("evento_lugar"),
                FieldSpec("evento_organizador"),
            ),
            key_fields=(
                "source_resource_id",
                "evento_nombre",
                "municipio_normalizado",
                "evento_fecha_inicio",
            ),
            validators=(_fecha_fin_in_year,),
        ),
    ),
    facts=(
        _ine_fact(
            "fact_eventos_deportivos_municipio",
            "silver_evento_deportivo",
            procedure="refresh_eventos_deportivos_facts",
        ),
    ),
)

# ── Actividades formativas ──────────────────────────────────────────────

ACTIVIDADES_FORMATIVAS = DatasetSpec(
    name="actividades_formativas",
    pipeline_name="ckan_actividades_formativas",
    dataset_id="actividades-formativas",
    description="Training activities run by local agencies",
    resources=(
        ResourceSpec(
            key="actividades",
            resource_id="actividades-formativas",
            bronze_table="bronze_actividades_formativas",
            silver_table="silver_actividad_formativa",
            fields=(
                FieldSpec("actividad_id", required=True),
                FieldSpec("actividad_titulo", required=True),
                FieldSpec("actividad_tipo", required=True),
                FieldSpec("agencia_nombre", required=True),
                FieldSpec("lugar_nombre"),
                MUNICIPIO,
                FieldSpec("actividad_dias", kind="integer"),
                FieldSpec("actividad_horas", kind="numeric"),
                FieldSpec("actividad_plazas", kind="integer"),
                FieldSpec("actividad_horario"),
                FieldSpec("actividad_estado", required=True),
                FieldSpec("actividad_inicio", kind="date"),
                FieldSpec("actividad_fin", kind="date"),
                FieldSpec("inscripcion_estado"),
            ),
            key_fields=("source_resource_id", "actividad_id"),
        ),
    ),
    facts=(
        _ine_fact(
            "fact_actividades_formativas_municipio",
            "silver_actividad_formativa",
            "actividad_tipo",
            "actividad_estado",
            procedure="refresh_actividades_formativas_facts",
            measures={"total_plazas": "actividad_plazas", "total_horas": "actividad_horas"},
        ),
    ),
)

# ── Oficinas de información turística ───────────────────────────────────

OFICINAS_TURISMO = DatasetSpec(
    name="oficinas_turismo",
    pipeline_name="ckan_oficinas_informacion_turistica",
    dataset_id="89d42ef7-009b-4ec2-8b9b-f6ed50d19998",
    description="Tourist information offices",
    resources=(
        ResourceSpec(
            key="oficinas",
            resource_id="907b2423-abb3-4382-ad53-75db4248c152",
            bronze_table="bronze_oficinas_turismo",
            silver_table="silver_oficina_turismo",
            fields=(
                FieldSpec("oficina_nombre", required=True),
                FieldSpec("oficina_horario"),
                FieldSpec("oficina_telefono"),
                FieldSpec("oficina_descripcion"),
                FieldSpec("oficina_ubicacion"),
                FieldSpec("oficina_zona"),
                MUNICIPIO,
                FieldSpec("oficina_codigo_postal", kind="postal_code"),
                FieldSpec("oficina_estado"),
                FieldSpec("latitud", kind="numeric", range=LATITUDE),
                FieldSpec("longitud", kind="numeric", range=LONGITUDE),
            ),
            key_fields=(
                "source_resource_id",
                "oficina_nombre",
                "municipio_normalizado",
                "oficina_ubicacion",
            ),
            postal_code_field="oficina_codigo_postal",
        ),
    ),
    facts=(
        _ine_fact(
            "fact_oficinas_turismo_municipio",
            "silver_oficina_turismo",
            procedure="refresh_oficinas_turismo_facts",
        ),
    ),
    # Airport offices are listed under the airport name, not a municipality
    overrides={
        "Aeropuerto del Norte": "38023",
        "Aeropuerto del Sur": "38018",
    },
)

# ── Bienes de interés cultural ──────────────────────────────────────────

BIENES_INTERES_CULTURAL = DatasetSpec(
    name="bienes_interes_cultural",
    pipeline_name="ckan_bienes_interes_cultural",
    dataset_id="83530250-3418-43d0-8019-18345a211271",
    description="Protected cultural heritage sites",
    resources=(
        ResourceSpec(
            key="bic",
            resource_id="fd0e2bf8-f195-467e-9206-eb4e66287dd8",
            bronze_table="bronze_bienes_interes_cultural",
            silver_table="silver_bien_interes_cultural",
            fields=(
                FieldSpec("bic_nombre", required=True),
                FieldSpec("bic_categoria", kind="upper", required=True, choices=BIC_CATEGORIES),
                FieldSpec("bic_entorno", kind="boolean"),
                FieldSpec("municipio_nombre"),
                FieldSpec("bic_descripcion"),
                FieldSpec("boletin1_nombre"),
                FieldSpec("boletin1_url"),
                FieldSpec("boletin2_nombre"),
                FieldSpec("boletin2_url"),
            ),
            key_fields=("source_resource_id", "bic_nombre", "bic_categoria"),
            procedure="upsert_bic_batch",
        ),
    ),
    facts=(
        _ine_fact(
            "fact_bic_municipio_categoria",
            "silver_bien_interes_cultural",
            "bic_categoria",
            procedure="refresh_bic_facts",
        ),
    ),
)

# ── Instalaciones deportivas (parent + children) ────────────────────────

_INSTALACION_GATE = ReferenceGate(
    field="instalacion_codigo",
    parent_table="silver_instalacion_deportiva",
    parent_column="instalacion_codigo",
)

INSTALACIONES_DEPORTIVAS = DatasetSpec(
    name="instalaciones_deportivas",
    pipeline_name="ckan_instalaciones_deportivas",
    dataset_id="92cc7f97-aa47-4df7-876d-24dcdaf747ed",
    description="Sports facilities census with their spaces and features",
    resources=(
        ResourceSpec(
            key="instalaciones",
            resource_id="9efc232a-e084-4546-936b-15d5f0262fe0",
            bronze_table="bronze_instalaciones_deportivas",
            silver_table="silver_instalacion_deportiva",
            fields=(
                FieldSpec("instalacion_codigo", required=True),
                FieldSpec("instalacion_nombre", required=True),
                MUNICIPIO,
                FieldSpec("codigo_postal", kind="postal_code"),
                FieldSpec("email"),
                FieldSpec("telefono_fijo"),
                FieldSpec("web"),
                FieldSpec("fax"),
                FieldSpec("propiedad"),
                FieldSpec("tipo_gestion"),
                FieldSpec("observaciones"),
                FieldSpec("longitud", kind="numeric", range=LONGITUDE),
                FieldSpec("latitud", kind="numeric", range=LATITUDE),
                FieldSpec("ultima_modificacion", kind="date"),
            ),
            key_fields=("instalacion_codigo",),
            postal_code_field="codigo_postal",
            soft_reference=ReferenceGate(
                field="municipality_code",
                parent_table=DIM_MUNICIPIO,
                parent_column="ine_code",
            ),
            procedure="upsert_instalacion_deportiva_batch",
        ),
        ResourceSpec(
            key="espacios_deportivos",
            resource_id="af665344-4a48-4be9-b112-700560689240",
            bronze_table="bronze_instalaciones_deportivas",
            silver_table="silver_espacio_deportivo",
            fields=(
                FieldSpec("instalacion_codigo", required=True),
                FieldSpec("espacio_codigo", required=True),
                FieldSpec("espacio_nombre", required=True),
                FieldSpec("espacio_tipo"),
                FieldSpec("espacio_clase"),
                FieldSpec("espacio_actividad_principal"),
                FieldSpec("pavimento_tipo"),
                FieldSpec("pavimento_conservacion"),
                FieldSpec("espacio_cerramiento"),
                FieldSpec("espacio_estado_uso"),
                FieldSpec("espacio_calefaccion"),
                FieldSpec("espacio_climatizacion"),
                FieldSpec("espacio_iluminacion"),
                FieldSpec("ultima_modificacion", kind="date"),
            ),
            key_fields=("instalacion_codigo", "espacio_codigo"),
            municipality_field=None,
            reference=_INSTALACION_GATE,
        ),
        ResourceSpec(
            key="espacios_complementarios",
            resource_id="3291f1ca-3878-47d6-9d6b-106c75fd2059",
            bronze_table="bronze_instalaciones_deportivas",
            silver_table="silver_espacio_complementario",
            fields=(
                FieldSpec("instalacion_codigo", required=True),
                FieldSpec("espacio_complementario_codigo", required=True),
                FieldSpec("espacio_complementario_nombre", required=True),
                FieldSpec("espacio_complementario_tipo"),
                FieldSpec("espacio_complementario_clase"),
                FieldSpec("ultima_modificacion", kind="date"),
            ),
            key_fields=("instalacion_codigo", "espacio_complementario_codigo"),
            municipality_field=None,
            reference=_INSTALACION_GATE,
        ),
        ResourceSpec(
            key="caracteristicas",
            resource_id="99154524-3d95-42d7-8127-f0f2216b3718",
            bronze_table="bronze_instalaciones_deportivas",
            silver_table="silver_caracteristica_instalacion",
            fields=(
                FieldSpec("instalacion_codigo", required=True),
                FieldSpec("instalacion_nombre", required=True),
                FieldSpec("categoria", required=True),
                FieldSpec("subcategoria"),
                FieldSpec("caracteristica", required=True),
            ),
            key_fields=("instalacion_codigo", "categoria", "subcategoria", "caracteristica"),
            municipality_field=None,
            reference=_INSTALACION_GATE,
        ),
    ),
    facts=(
        _ine_fact(
            "fact_instalacion_deportiva_municipio",
            "silver_instalacion_deportiva",
            procedure="refresh_fact_instalacion_deportiva_municipio_agg",
        ),
    ),
)

# ── Hostelería y restauración ───────────────────────────────────────────

HOSTELERIA_RESTAURACION = DatasetSpec(
    name="hosteleria_restauracion",
    pipeline_name="ckan_hosteleria_restauracion",
    dataset_id="hosteleria-restauracion",
    description="Bars, cafés and restaurants with their indoor and terrace capacity",
    resources=(
        ResourceSpec(
            key="establecimientos",
            resource_id="hosteleria-restauracion",
            bronze_table="bronze_ckan_hosteleria_restauracion_raw",
            silver_table="silver_establecimiento_hosteleria_restauracion",
            fields=(
                MUNICIPIO,
                FieldSpec("modalidad", kind="upper", required=True, choices=MODALIDADES_HOSTELERIA),
                FieldSpec("tipo", required=True),
                FieldSpec("nombre", required=True),
                FieldSpec("direccion"),
                FieldSpec("codigo_postal", kind="postal_code"),
                FieldSpec("aforo_interior", kind="integer"),
                FieldSpec("aforo_terraza", kind="integer"),
            ),
            key_fields=("source_resource_id", "municipio_normalizado", "nombre", "direccion"),
            postal_code_field="codigo_postal",
        ),
    ),
    facts=(
        # no database procedure exists for this table
        _ine_fact(
            "fact_establecimiento_hosteleria_municipio_agg",
            "silver_establecimiento_hosteleria_restauracion",
            "modalidad",
            "tipo",
            measures={
                "total_aforo_interior": "aforo_interior",
                "total_aforo_terraza": "aforo_terraza",
            },
        ),
    ),
)

# ── Instalaciones de gestión de residuos ────────────────────────────────

INSTALACIONES_RESIDUOS = DatasetSpec(
    name="instalaciones_residuos",
    pipeline_name="ckan_instalaciones_residuos",
    dataset_id="7fe14d90-83e3-4fd0-ab3b-4a3b0fa35197",
    description="Waste management facilities (recycling points, transfer plants)",
    resources=(
        ResourceSpec(
            key="instalaciones",
            resource_id="db61159f-d413-45b3-a37b-faa94036fe95",
            bronze_table="bronze_instalaciones_residuos",
            silver_table="silver_instalacion_residuo",
            fields=(
                FieldSpec("instalacion_nombre", required=True, sources=("nombre",)),
                FieldSpec("latitud", kind="numeric", range=LATITUDE, on_range="reject"),
                FieldSpec("longitud", kind="numeric", range=LONGITUDE, on_range="reject"),
                FieldSpec("titular"),
                FieldSpec("gestiona"),
                FieldSpec("telefono"),
                FieldSpec("descripcion"),
                FieldSpec("direccion"),
                FieldSpec("direccion_tipo_via"),
                FieldSpec("direccion_nombre_via"),
                FieldSpec("direccion_numero"),
                FieldSpec("direccion_codigo_postal", kind="postal_code"),
                FieldSpec("municipio_nombre", sources=("municipio",)),
                # the source carries its own INE code; malformed codes become null
                FieldSpec("municipality_code", kind="ine_code", sources=("codigo_municipio",)),
                FieldSpec("horario_1"),
                FieldSpec("horario_2"),
            ),
            key_fields=("source_resource_id", "instalacion_nombre", "municipio_nombre"),
            municipality_field=None,
            soft_reference=ReferenceGate(
                field="municipality_code",
                parent_table=DIM_MUNICIPIO,
                parent_column="ine_code",
            ),
        ),
    ),
    facts=(
        _ine_fact(
            "fact_instalacion_residuo_municipio_agg",
            "silver_instalacion_residuo",
            procedure="refresh_fact_instalacion_residuo_municipio_agg",
        ),
    ),
)

# ── INE Nomenclátor (population) ────────────────────────────────────────

_POPULATION = {
    "population_total": "population_total",
    "population_male": "population_male",
    "population_female": "population_female",
}

NOMENCLATOR = DatasetSpec(
    name="nomenclator",
    pipeline_name="ine_nomenclator",
    dataset_id="ine-nomenclator",
    description="Population by settlement unit (INE Nomenclátor)",
    source_kind="nomenclator",
    resources=(
        ResourceSpec(
            key="nomenclator",
            resource_id="nomenclator",
            bronze_table="bronze_nomenclator",
            silver_table="silver_nomenclator_unidad",
            fields=(
                FieldSpec("municipality_code", required=True, sources=("ine_code",)),
                FieldSpec("unit_code", required=True),
                FieldSpec("unit_name", required=True),
                FieldSpec("tipo", kind="upper", required=True,
                          choices=frozenset({"M", "ES", "NUC", "DIS"})),
                FieldSpec("municipio_nombre"),
                FieldSpec("population_total", kind="integer"),
                FieldSpec("population_male", kind="integer"),
                FieldSpec("population_female", kind="integer"),
                FieldSpec("year", kind="integer", required=True),
                FieldSpec("snapshot_date"),
            ),
            key_fields=("municipality_code", "unit_code", "tipo", "year"),
            municipality_field=None,
        ),
    ),
    facts=(
        FactSpec(
            table=DIM_MUNICIPIO,
            silver_table="silver_nomenclator_unidad",
            group_by=("municipality_code",),
            key_columns=("ine_code",),
            attributes={"municipio_nombre": "municipio_nombre"},
            count_column=None,
            source_filter={"tipo": "M"},
        ),
        FactSpec(
            table="dim_localidad",
            silver_table="silver_nomenclator_unidad",
            group_by=("municipality_code", "unit_code", "tipo"),
            key_columns=("ine_code", "unit_code", "tipo"),
            attributes={"localidad_name": "unit_name"},
            count_column=None,
            source_filter={"tipo": LOCALIDAD_TIPOS},
        ),
        FactSpec(
            table="fact_population_municipio",
            silver_table="silver_nomenclator_unidad",
            group_by=("municipality_code", "year"),
            key_columns=("ine_code", "year"),
            key_types={"year": "integer"},
            measures=_POPULATION,
            count_column=None,
            source_filter={"tipo": "M"},
        ),
        FactSpec(
            table="fact_population_localidad",
            silver_table="silver_nomenclator_unidad",
            group_by=("municipality_code", "unit_code", "tipo", "year"),
            key_columns=("ine_code", "unit_code", "tipo", "year"),
            key_types={"year": "integer"},
            attributes={"localidad_name": "unit_name"},
            measures=_POPULATION,
            count_column=None,
            source_filter={"tipo": LOCALIDAD_TIPOS},
        ),
    ),
)

# ── Wikidata municipality profiles ──────────────────────────────────────

WIKIDATA_MUNICIPIOS = DatasetSpec(
    name="wikidata_municipios",
    pipeline_name="wikidata_municipios",
    dataset_id="wikidata",
    description="Municipality profiles from Wikidata",
    source_kind="wikidata",
    resources=(
        ResourceSpec(
            key="municipios",
            resource_id="wikidata-municipios",
            bronze_table="bronze_wikidata",
            silver_table="silver_wikidata_municipio",
            fields=(
                FieldSpec("municipality_code", required=True, sources=("ine_code",)),
                FieldSpec("wikidata_id", required=True),
                FieldSpec("label"),
                FieldSpec("description"),
                FieldSpec("latitude", kind="numeric", range=LATITUDE),
                FieldSpec("longitude", kind="numeric", range=LONGITUDE),
                FieldSpec("surface_area_km2", kind="numeric"),
                FieldSpec("altitude_m", kind="numeric"),
                FieldSpec("population", kind="integer"),
                FieldSpec("postal_code", max_length=50),
                FieldSpec("official_website"),
                FieldSpec("image_url"),
                FieldSpec("inception_date", kind="date"),
            ),
            key_fields=("municipality_code",),
            municipality_field=None,
        ),
    ),
)


CATALOG: dict[str, DatasetSpec] = {
    spec.name: spec
    for spec in (
        ALOJAMIENTOS,
        EQUIPAMIENTOS,
        EVENTOS_DEPORTIVOS,
        ACTIVIDADES_FORMATIVAS,
        OFICINAS_TURISMO,
        BIENES_INTERES_CULTURAL,
        INSTALACIONES_DEPORTIVAS,
        HOSTELERIA_RESTAURACION,
        INSTALACIONES_RESIDUOS,
        NOMENCLATOR,
        WIKIDATA_MUNICIPIOS,
    )
}


def get_dataset(name: str) -> DatasetSpec:
    """Look up a dataset by name or pipeline name."""
    if name in CATALOG:
        return CATALOG[name]
    for spec in CATALOG.values():
        if spec.pipeline_name == name:
            return spec
    raise ConfigError(f"Unknown dataset: {name}. Known: {', '.join(sorted(CATALOG))}")


def list_datasets() -> list[DatasetSpec]:
    return list(CATALOG.values())


__all__ = [
    "BIC_CATEGORIES",
    "CATALOG",
    "LOCALIDAD_TIPOS",
    "MODALIDADES",
    "MODALIDADES_HOSTELERIA",
    "get_dataset",
    "list_datasets",
]
