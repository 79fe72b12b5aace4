"""Image source discovering images from Kubernetes workloads."""

import asyncio
import logging
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from vulnrelay.exceptions import DiscoveryError
from vulnrelay.schemas.vulnerability import ImageRef, Placement
from vulnrelay.services.providers.base import ImageSource

logger = logging.getLogger(__name__)


class KubernetesImageSource(ImageSource):
    """Discovers images from Deployments, StatefulSets, DaemonSets and jobs.

    Images are read from workload pod templates rather than running pods,
    so scaled-down workloads are still reported. Jobs created by a CronJob
    are attributed to the CronJob and not listed twice.
    """

    name = "kubernetes"

    def __init__(
        self,
        namespaces: Optional[Sequence[str]] = None,
        apps_api: Optional[client.AppsV1Api] = None,
        batch_api: Optional[client.BatchV1Api] = None,
    ):
        """Initialize the source.

        Args:
            namespaces: Namespaces to scan; all namespaces when empty
            apps_api: Preconfigured AppsV1Api (loaded from config when None)
            batch_api: Preconfigured BatchV1Api (loaded from config when None)
        """
        self.namespaces = [ns for ns in (namespaces or []) if ns]
        self._apps_api = apps_api
        self._batch_api = batch_api

    def _init_kubernetes_client(self) -> None:
        try:
            config.load_incluster_config()
            logger.info("Using in-cluster Kubernetes config")
        except config.ConfigException:
            try:
                config.load_kube_config()
                logger.info("Using local kubeconfig")
            except config.ConfigException as e:
                raise DiscoveryError(self.name, f"could not configure Kubernetes client: {e}") from e

        self._apps_api = client.AppsV1Api()
        self._batch_api = client.BatchV1Api()

    def _list(self, all_namespaces: Callable, namespaced: Callable) -> list:
        if not self.namespaces:
            return all_namespaces().items
        items = []
        for namespace in self.namespaces:
            items.extend(namespaced(namespace).items)
        return items

    def _extract(
        self, pod_spec, namespace: str, workload: str, workload_type: str
    ) -> Iterable[ImageRef]:
        if pod_spec is None:
            return
        placement = Placement(namespace=namespace, workload=workload, workload_type=workload_type)
        for container in list(pod_spec.containers or []) + list(pod_spec.init_containers or []):
            if container.image and self.is_registry_image(container.image):
                yield ImageRef(uri=container.image, placement=placement)

    def _discover(self) -> List[ImageRef]:
        if self._apps_api is None or self._batch_api is None:
            self._init_kubernetes_client()
        apps, batch = self._apps_api, self._batch_api

        workloads: List[Tuple[str, object, object]] = []

        for kind, all_ns, namespaced in (
            ("Deployment", apps.list_deployment_for_all_namespaces, apps.list_namespaced_deployment),
            ("StatefulSet", apps.list_stateful_set_for_all_namespaces, apps.list_namespaced_stateful_set),
            ("DaemonSet", apps.list_daemon_set_for_all_namespaces, apps.list_namespaced_daemon_set),
        ):
            items = self._list(all_ns, namespaced)
            logger.debug(f"Processing {len(items)} {kind} objects")
            workloads.extend((kind, item.metadata, item.spec.template.spec) for item in items)

        for cron_job in self._list(
            batch.list_cron_job_for_all_namespaces, batch.list_namespaced_cron_job
        ):
            workloads.append(
                ("CronJob", cron_job.metadata, cron_job.spec.job_template.spec.template.spec)
            )

        for job in self._list(batch.list_job_for_all_namespaces, batch.list_namespaced_job):
            owners = job.metadata.owner_references or []
            if any(owner.kind == "CronJob" for owner in owners):
                continue
            workloads.append(("Job", job.metadata, job.spec.template.spec))

        images: List[ImageRef] = []
        seen: Set[Tuple[str, str, str]] = set()
        for kind, metadata, pod_spec in workloads:
            for image in self._extract(pod_spec, metadata.namespace, metadata.name, kind):
                key = (image.uri, image.placement.namespace, image.placement.workload)
                if key in seen:
                    continue
                seen.add(key)
                images.append(image)

        return images

    async def discover_images(self) -> List[ImageRef]:
        scope = ", ".join(self.namespaces) if self.namespaces else "all namespaces"
        logger.info(f"Discovering images from Kubernetes workloads ({scope})")

        try:
            images = await asyncio.to_thread(self._discover)
        except ApiException as e:
            raise DiscoveryError(
                self.name, f"Kubernetes API error: {e.status} {e.reason}"
            ) from e

        logger.info(f"Kubernetes image discovery completed: {len(images)} images")
        return images
