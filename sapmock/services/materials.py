"""
MaterialsManagementHandler Class - MM module endpoints

CRUD over material master records. Deletion only sets the deletion flag,
as in SAP; flagged materials are hidden from listings and cannot be
changed.
"""

import logging
from typing import Any, Dict, List

from sapmock.errors import HandlerFailure, NotFoundError
from sapmock.models.data_models import EndpointRequest, SAPEndpoint
from sapmock.models.materials import CreateMaterialRequest, Material, MaterialListResponse, UpdateMaterialRequest
from sapmock.services.module_handler import ModuleHandler

logger = logging.getLogger(__name__)

COLLECTION = "materials"


class MaterialsManagementHandler(ModuleHandler):
    default_module_id = "MM"
    default_name = "Materials Management"

    def get_endpoints(self) -> List[SAPEndpoint]:
        return [
            SAPEndpoint("/materials/{id}", "GET", self.get_material, response_type=Material),
            SAPEndpoint("/materials", "GET", self.list_materials, response_type=MaterialListResponse),
            SAPEndpoint("/materials", "POST", self.create_material,
                        request_type=CreateMaterialRequest, response_type=Material),
            SAPEndpoint("/materials/{id}", "PUT", self.update_material,
                        request_type=UpdateMaterialRequest, response_type=Material),
            SAPEndpoint("/materials/{id}", "DELETE", self.delete_material),
        ]

    def _require(self, material_id: str) -> Dict[str, Any]:
        record = self.load(COLLECTION, material_id)
        if record is None:
            raise NotFoundError(f"Material with ID {material_id} does not exist")
        return record

    def get_material(self, request: EndpointRequest) -> Material:
        return Material.model_validate(self._require(self.route_id(request)))

    def list_materials(self, request: EndpointRequest) -> MaterialListResponse:
        material_type = (request.query_parameters.get("material_type") or "").lower()
        material_group = (request.query_parameters.get("material_group") or "").lower()

        materials = [Material.model_validate(r) for r in self.load_all(COLLECTION)]
        materials = [
            m for m in materials
            if not m.deletion_flag
            and (not material_type or m.material_type.lower() == material_type)
            and (not material_group or m.material_group.lower() == material_group)
        ]

        page_items, page, page_size = self.paginate(request, materials)
        return MaterialListResponse(materials=page_items, total_count=len(materials), page=page, page_size=page_size)

    def create_material(self, request: EndpointRequest) -> Material:
        body: CreateMaterialRequest = request.body
        with self.write_lock:
            number = body.material_number or self.next_number(COLLECTION, "MAT-%06d")
            if self.load(COLLECTION, number) is not None:
                raise HandlerFailure(f"Material with number {number} already exists", code="MM003", message_class="MM")

            now = self.now()
            material = Material(**body.model_dump(exclude={"material_number"}), material_number=number,
                                created_at=now, changed_at=now)
            self.save(COLLECTION, number, material.model_dump(mode="json"))
        logger.info("Created material %s in %s/%s", number, self.system_id, self.module_id)
        return material

    def update_material(self, request: EndpointRequest) -> Material:
        material_id = self.route_id(request)
        body: UpdateMaterialRequest = request.body
        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        with self.write_lock:
            current = Material.model_validate(self._require(material_id))
            if current.deletion_flag:
                raise HandlerFailure(
                    f"Material {material_id} is marked for deletion and cannot be updated",
                    code="MM004", message_class="MM",
                )
            updated = current.model_copy(update={**changes, "changed_at": self.now()})
            self.save(COLLECTION, material_id, updated.model_dump(mode="json"))
        return updated

    def delete_material(self, request: EndpointRequest) -> Dict[str, Any]:
        material_id = self.route_id(request)
        with self.write_lock:
            record = self._require(material_id)
            record["deletion_flag"] = True
            record["changed_at"] = self.now().isoformat()
            self.save(COLLECTION, material_id, record)
        return {"material_number": material_id, "deletion_flag": True, "message": f"Material {material_id} marked for deletion"}
